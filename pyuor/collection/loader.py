"""Resolve a manifest tree into a collection

The walk starts at a root descriptor, fetches and verifies it, registers it
together with its config and layers, then descends into every layer that is
itself a manifest or an index. Each digest is fetched at most once per load,
so shared and cyclic references terminate.
"""
import logging
import threading
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from pyuor.collection.collection import Collection
from pyuor.context import Context
from pyuor.errors import CancellationError, FetchError, LoadError
from pyuor.oci.descriptor import Descriptor, MediaKind
from pyuor.oci.manifest import parse_index, parse_manifest

logger = logging.getLogger(__name__)

FetchFunc = Callable[[Context, Descriptor], bytes]


class _Traversal:
    def __init__(self, ctx: Context, collection: Collection, fetch: FetchFunc):
        self.ctx = ctx
        self.collection = collection
        self.fetch = fetch
        self._visited: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, descriptor: Descriptor) -> bool:
        """Mark a digest visited, False when another branch got there first"""
        with self._lock:
            if descriptor.digest in self._visited:
                return False
            self._visited.add(descriptor.digest)
            return True

    def _fetch(self, descriptor: Descriptor) -> bytes:
        self.ctx.raise_if_cancelled(descriptor.digest)
        logger.debug("Fetching %s (%s)", descriptor.digest, descriptor.mediaType)
        try:
            data = self.fetch(self.ctx, descriptor)
        except LoadError as e:
            if e.digest is None:
                e.digest = descriptor.digest
            raise
        except Exception as e:
            if self.ctx.cancelled:
                raise CancellationError(
                    self.ctx.reason(), digest=descriptor.digest
                ) from e
            raise FetchError(str(e), digest=descriptor.digest) from e
        # Content that arrives after cancellation is dropped
        self.ctx.raise_if_cancelled(descriptor.digest)
        return data

    def expand(self, descriptor: Descriptor) -> list[Descriptor]:
        """Fetch, verify and register a composite descriptor, return its children

        The children are not registered yet, that is up to the caller so
        the order of registration and descent stays under its control.
        """
        data = self._fetch(descriptor)
        descriptor.verify(data)
        self.collection.add_node(descriptor)

        try:
            if descriptor.kind is MediaKind.INDEX:
                return list(parse_index(data).manifests)
            manifest = parse_manifest(data)
        except LoadError as e:
            e.digest = descriptor.digest
            raise
        self.collection.add_node(manifest.config)
        return list(manifest.layers)

    def walk(self, descriptor: Descriptor):
        if not self.claim(descriptor):
            logger.debug("Already visited %s", descriptor.digest)
            return
        for child in self.expand(descriptor):
            self.collection.add_node(child)
            if child.kind.composite:
                self.walk(child)


def _walk_concurrent(traversal: _Traversal, root: Descriptor, max_workers: int):
    pending: set[Future] = set()
    with ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix="pyuor-loader"
    ) as executor:

        def submit(descriptor: Descriptor):
            if traversal.claim(descriptor):
                pending.add(executor.submit(traversal.expand, descriptor))

        submit(root)
        try:
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.discard(future)
                    for child in future.result():
                        traversal.collection.add_node(child)
                        if child.kind.composite:
                            submit(child)
        except BaseException:
            traversal.ctx.cancel("sibling branch failed")
            for future in pending:
                future.cancel()
            raise


def load_from_manifest(
    ctx: Context,
    collection: Collection,
    fetch: FetchFunc,
    root: Descriptor,
    *,
    max_workers: int = 1,
):
    """Load the manifest tree rooted at `root` into `collection`

    :param ctx: Cancellation context, observed around every fetch.
    :param collection: The collection to add nodes to.
    :param fetch: Callable returning the raw bytes for a descriptor.
    :param root: Descriptor of the root, parsed as an index when its media
        type says so and as a manifest otherwise.
    :param max_workers: Fetch sibling manifests on this many threads.

    The first error aborts the load. Nodes added before the error stay in the
    collection, loading again is safe since adding a node is idempotent.
    """
    logger.info("Loading %s into collection %r", root.digest, collection.name)
    if max_workers <= 1:
        _Traversal(ctx, collection, fetch).walk(root)
    else:
        # Siblings share a child context so a failing branch stops the others
        _walk_concurrent(
            _Traversal(ctx.child(), collection, fetch), root, max_workers
        )
    logger.info("Collection %r has %d nodes", collection.name, len(collection))
