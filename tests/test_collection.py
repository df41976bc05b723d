import threading

from pyuor.collection import Collection, Node
from pyuor.oci.descriptor import Descriptor, compute_digest


def _descriptor(data: bytes, **kwargs) -> Descriptor:
    return Descriptor(
        mediaType="application/json", digest=compute_digest(data), size=len(data), **kwargs
    )


def test_new_collection_is_empty():
    collection = Collection("test")
    assert collection.name == "test"
    assert collection.nodes() == []
    assert len(collection) == 0


def test_add_node():
    collection = Collection("test")
    descriptor = _descriptor(
        b"{}", annotations={"org.opencontainers.image.title": "info.json"}
    )
    assert collection.add_node(descriptor)
    assert descriptor.digest in collection
    node = collection.get(descriptor.digest)
    assert node == Node(
        id=descriptor.digest,
        mediaType="application/json",
        size=2,
        annotations={"org.opencontainers.image.title": "info.json"},
    )
    assert node.title == "info.json"
    assert node.mediaType == "application/json"
    assert node.annotations == {"org.opencontainers.image.title": "info.json"}


def test_add_node_is_idempotent():
    collection = Collection("test")
    assert collection.add_node(_descriptor(b"{}"))
    assert not collection.add_node(_descriptor(b"{}"))
    # The first registration wins, even when metadata differs
    assert not collection.add_node(
        _descriptor(b"{}", annotations={"org.opencontainers.image.title": "x"})
    )
    assert len(collection) == 1
    assert collection.nodes()[0].annotations is None


def test_nodes_are_identified_by_digest():
    collection = Collection("test")
    collection.add_node(
        _descriptor(b"1", annotations={"org.opencontainers.image.title": "one.json"})
    )
    collection.add_node(
        _descriptor(b"2", annotations={"org.opencontainers.image.title": "two.json"})
    )
    nodes = set(collection.nodes())
    assert len(nodes) == 2
    assert Node(id=compute_digest(b"1"), mediaType="text/plain", size=0) in nodes
    assert Node(id=compute_digest(b"3"), mediaType="application/json", size=1) not in nodes


def test_nodes_is_a_snapshot():
    collection = Collection("test")
    collection.add_node(_descriptor(b"1"))
    nodes = collection.nodes()
    collection.add_node(_descriptor(b"2"))
    assert len(nodes) == 1
    assert len(collection) == 2


def test_concurrent_add_node():
    collection = Collection("test")
    descriptors = [_descriptor(str(i).encode()) for i in range(50)]
    barrier = threading.Barrier(8)

    def add():
        barrier.wait()
        for descriptor in descriptors:
            collection.add_node(descriptor)

    threads = [threading.Thread(target=add) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert sorted(n.id for n in collection.nodes()) == sorted(
        d.digest for d in descriptors
    )
