"""Push, pull and inspect UOR collections

A collection is pushed as a single OCI image manifest with one layer per
file. Each layer is titled with the file's path relative to the workspace.
"""
import logging
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

import httpx

from pyuor.collection import Collection, load_from_manifest
from pyuor.context import Context
from pyuor.errors import IntegrityError
from pyuor.fetch import Fetcher, LayoutFetcher, MemoryFetcher, RegistryFetcher
from pyuor.oci.config import EmptyConfig
from pyuor.oci.descriptor import Descriptor, MediaKind
from pyuor.oci.layer import Blob, Layer
from pyuor.oci.manifest import Manifest, parse_index, parse_manifest
from pyuor.options import PullOptions, PushOptions
from pyuor.sign import CosignSigner, Signer

logger = logging.getLogger(__name__)


def build_manifest(path: Path, annotations: dict[str, str] | None = None) -> Manifest:
    """Create a manifest with a layer for every file under `path`"""
    if not path.is_dir():
        raise ValueError(f"{path} is not a directory")
    layers = [
        Layer.from_path(file, root=path)
        for file in sorted(path.rglob("*"))
        if file.is_file()
    ]
    return Manifest(config=EmptyConfig(), layers=layers, annotations=annotations)


def safe_path(root: Path, title: str) -> Path:
    """Resolve a layer title below `root`, refusing titles that escape it"""
    relative = PurePosixPath(title)
    if title in ("", ".") or relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"layer title {title!r} escapes the output directory")
    return root.joinpath(*relative.parts)


def push_collection(
    path: Path,
    options: PushOptions,
    annotations: dict[str, str] | None = None,
    signer: Signer | None = None,
    transport: httpx.BaseTransport | None = None,
    ctx: Context | None = None,
) -> Collection:
    """Push the files under `path` as a collection, return the pushed collection"""
    ctx = ctx or Context(timeout=options.timeout)
    reference = options.reference
    manifest = build_manifest(path, annotations=annotations)
    root = manifest.descriptor

    blobs: dict[str, Blob] = {
        blob.digest: blob for blob in (root, manifest.config, *manifest.layers)
    }
    collection = Collection(str(reference))
    load_from_manifest(
        ctx,
        collection,
        MemoryFetcher({digest: blob.data for digest, blob in blobs.items()}),
        root,
    )

    logger.info("Pushing %s (%d files) to %s", path, len(manifest.layers), reference)
    with options.client(reference, actions="pull,push", transport=transport) as client:
        for digest, blob in blobs.items():
            if digest != root.digest:
                ctx.raise_if_cancelled(digest)
                blob.push(name=reference.repository, client=client)
        client.push_manifest(
            name=reference.repository, descriptor=root, reference=reference.tag
        )
    logger.info("Pushed %s@%s", reference, root.digest)

    if options.sign:
        signer = signer or CosignSigner()
        signer.sign(
            f"{reference.registry}/{reference.repository}@{root.digest}",
            options.signing_options(reference),
        )
    return collection


class _ManifestRecorder:
    """Fetcher that keeps the image manifests it serves"""

    def __init__(self, fetch: Fetcher):
        self.fetch = fetch
        self.manifests: dict[str, bytes] = {}

    def __call__(self, ctx: Context, descriptor: Descriptor) -> bytes:
        data = self.fetch(ctx, descriptor)
        if descriptor.kind is not MediaKind.INDEX:
            self.manifests[descriptor.digest] = data
        return data


def _titled_layers(
    manifests: Iterable[bytes],
) -> dict[str, tuple[Descriptor, list[str]]]:
    """Group the titled file layers of `manifests` by digest"""
    files: dict[str, tuple[Descriptor, list[str]]] = {}
    for data in manifests:
        for layer in parse_manifest(data).layers:
            if layer.title is None or layer.kind.composite:
                continue
            _, titles = files.setdefault(layer.digest, (layer, []))
            if layer.title not in titles:
                titles.append(layer.title)
    return files


def _download(
    ctx: Context, descriptor: Descriptor, titles: list[str], fetch: Fetcher, output: Path
):
    targets = [safe_path(output, title) for title in titles]
    data = fetch(ctx, descriptor)
    descriptor.verify(data)
    for target in targets:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Downloaded %s to %s", descriptor.digest, target)


def pull_collection(
    options: PullOptions,
    output: Path | None = None,
    signer: Signer | None = None,
    transport: httpx.BaseTransport | None = None,
    ctx: Context | None = None,
) -> Collection:
    """Load a collection from a registry, downloading its files to `output`"""
    ctx = ctx or Context(timeout=options.timeout)
    reference = options.reference
    with options.client(reference, actions="pull", transport=transport) as client:
        root = client.resolve(reference.repository, reference.reference)
        if reference.digest and root.digest != reference.digest:
            raise IntegrityError(
                f"registry resolved {reference} to {root.digest}",
                digest=reference.digest,
            )
        if options.verify:
            signer = signer or CosignSigner()
            signer.verify(
                f"{reference.registry}/{reference.repository}@{root.digest}",
                options.signing_options(reference),
            )

        fetch = _ManifestRecorder(RegistryFetcher(client, reference.repository))
        collection = Collection(str(reference))
        load_from_manifest(
            ctx, collection, fetch, root, max_workers=options.max_workers
        )
        if output is not None:
            files = _titled_layers(fetch.manifests.values())
            for descriptor, titles in files.values():
                _download(ctx, descriptor, titles, fetch.fetch, output)
    return collection


def inspect_collection(
    options: PullOptions,
    transport: httpx.BaseTransport | None = None,
    ctx: Context | None = None,
) -> Collection:
    return pull_collection(options, output=None, transport=transport, ctx=ctx)


def load_layout(
    path: Path, ctx: Context | None = None, max_workers: int = 1
) -> Collection:
    """Load every manifest listed in the index.json of an OCI image layout"""
    ctx = ctx or Context()
    index = parse_index((path / "index.json").read_bytes())
    collection = Collection(str(path))
    fetch = LayoutFetcher(path)
    for descriptor in index.manifests:
        load_from_manifest(ctx, collection, fetch, descriptor, max_workers=max_workers)
    return collection
