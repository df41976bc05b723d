import logging
import threading

from pydantic import BaseModel, ConfigDict

from pyuor.oci.descriptor import ANNOTATION_TITLE, Descriptor

logger = logging.getLogger(__name__)


class Node(BaseModel):
    """A single piece of content in a collection, identified by its digest"""

    model_config = ConfigDict(frozen=True)

    id: str
    mediaType: str
    size: int
    annotations: dict[str, str] | None = None

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    @classmethod
    def from_descriptor(cls, descriptor: Descriptor) -> "Node":
        return cls(
            id=descriptor.digest,
            mediaType=descriptor.mediaType,
            size=descriptor.size,
            annotations=dict(descriptor.annotations) if descriptor.annotations else None,
        )

    @property
    def title(self) -> str | None:
        if not self.annotations:
            return None
        return self.annotations.get(ANNOTATION_TITLE)


class Collection:
    """Deduplicated set of nodes keyed by digest.

    Safe to read and extend from multiple threads.
    """

    def __init__(self, name: str):
        self._name = name
        self._nodes: dict[str, Node] = {}
        self._lock = threading.Lock()

    def __repr__(self):
        return f"Collection(name={self._name!r}, nodes={len(self)})"

    def __len__(self):
        with self._lock:
            return len(self._nodes)

    def __contains__(self, digest: str) -> bool:
        with self._lock:
            return digest in self._nodes

    @property
    def name(self) -> str:
        return self._name

    def add_node(self, descriptor: Descriptor) -> bool:
        """Add a node for `descriptor`, return False if the digest was already present"""
        with self._lock:
            if descriptor.digest in self._nodes:
                return False
            self._nodes[descriptor.digest] = Node.from_descriptor(descriptor)
        logger.debug("Added node %s (%s)", descriptor.digest, descriptor.mediaType)
        return True

    def get(self, digest: str) -> Node | None:
        with self._lock:
            return self._nodes.get(digest)

    def nodes(self) -> list[Node]:
        """Return a snapshot of all nodes, in no particular order"""
        with self._lock:
            return list(self._nodes.values())

