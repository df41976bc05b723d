from pyuor import artifact, collection, oci
from pyuor.collection import Collection, Node, load_from_manifest
from pyuor.context import Context

__version__ = "0.1.0"

__all__ = [
    "Collection",
    "Context",
    "Node",
    "artifact",
    "collection",
    "load_from_manifest",
    "oci",
]
