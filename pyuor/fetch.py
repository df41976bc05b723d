"""Fetch collaborators for `pyuor.collection.load_from_manifest`

A fetcher is any callable taking a context and a descriptor and returning
the raw bytes of the content it points at.
"""
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

import httpx

from pyuor.context import Context
from pyuor.errors import FetchError
from pyuor.oci.client import Client
from pyuor.oci.descriptor import Descriptor

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    def __call__(self, ctx: Context, descriptor: Descriptor) -> bytes:
        ...


class RegistryFetcher:
    """Fetch manifests and blobs of repository `name` from a registry"""

    def __init__(self, client: Client, name: str):
        self.client = client
        self.name = name

    def __call__(self, ctx: Context, descriptor: Descriptor) -> bytes:
        try:
            return self.client.fetch(ctx, self.name, descriptor)
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"{self.name}: registry returned {e.response.status_code}",
                digest=descriptor.digest,
            ) from e
        except httpx.HTTPError as e:
            if ctx.cancelled:
                # Timeouts caused by the context deadline are left to the loader
                raise
            raise FetchError(f"{self.name}: {e}", digest=descriptor.digest) from e


class LayoutFetcher:
    """Fetch blobs from a local OCI image layout

    ref: https://github.com/opencontainers/image-spec/blob/main/image-layout.md
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def blob_path(self, digest: str) -> Path:
        algorithm, encoded = digest.split(":", 1)
        return self.path / "blobs" / algorithm / encoded

    def __call__(self, ctx: Context, descriptor: Descriptor) -> bytes:
        ctx.raise_if_cancelled(descriptor.digest)
        try:
            return self.blob_path(descriptor.digest).read_bytes()
        except FileNotFoundError as e:
            raise FetchError(
                f"blob not found in {self.path}", digest=descriptor.digest
            ) from e


class MemoryFetcher:
    """Serve content from a mapping of digest to bytes"""

    def __init__(self, blobs: Mapping[str, bytes] | None = None):
        self.blobs = dict(blobs or {})

    def add(self, digest: str, data: bytes):
        self.blobs[digest] = data

    def __call__(self, ctx: Context, descriptor: Descriptor) -> bytes:
        ctx.raise_if_cancelled(descriptor.digest)
        try:
            return self.blobs[descriptor.digest]
        except KeyError:
            raise FetchError("not found", digest=descriptor.digest) from None
