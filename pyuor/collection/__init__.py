"""Content-addressed collection of nodes built from a manifest tree"""
from pyuor.collection.collection import Collection, Node
from pyuor.collection.loader import load_from_manifest

__all__ = ["Collection", "Node", "load_from_manifest"]
