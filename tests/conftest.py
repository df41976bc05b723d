import re
import uuid
from pathlib import Path

import httpx
import pytest

from pyuor.oci.descriptor import (
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    compute_digest,
)
from pyuor.oci.layer import Blob
from pyuor.oci.manifest import Index, Manifest

TEST_DATA = Path(__file__).parent / "testdata"

ROOT_DIGEST = "sha256:5410e32d6fdd0b638ae95c0c88326a6afe62105f2db1505ded397d2074dcbeb5"


@pytest.fixture
def testdata() -> Path:
    """Return the testdata dir for this module"""
    return TEST_DATA


@pytest.fixture
def manifest_bytes(testdata) -> bytes:
    return (testdata / "manifest.json").read_bytes()


@pytest.fixture
def root(manifest_bytes) -> Descriptor:
    return Descriptor(
        mediaType=MEDIA_TYPE_IMAGE_MANIFEST,
        digest=ROOT_DIGEST,
        size=len(manifest_bytes),
    )


@pytest.fixture(autouse=True)
def docker_config(tmp_path_factory, monkeypatch) -> Path:
    """Keep the credentials of the user running the tests out of the way"""
    path = tmp_path_factory.mktemp("docker")
    monkeypatch.setenv("DOCKER_CONFIG", str(path))
    return path


class Store:
    """Content addressed blobs for building manifest trees in tests"""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}

    def blob(self, data: bytes, media_type: str = "application/octet-stream", title=None):
        self.blobs[compute_digest(data)] = data
        return Descriptor(
            mediaType=media_type,
            digest=compute_digest(data),
            size=len(data),
            annotations={"org.opencontainers.image.title": title} if title else None,
        )

    def manifest(self, *layers: Descriptor, config: Descriptor | None = None) -> Blob:
        config = config or self.blob(b"{}", "application/vnd.uor.config.v1+json")
        descriptor = Manifest(config=config, layers=list(layers)).descriptor
        self.blobs[descriptor.digest] = descriptor.data
        return descriptor

    def index(self, *manifests: Descriptor) -> Descriptor:
        data = Index(manifests=[m.model_dump() for m in manifests]).model_dump_json(
            exclude_none=True
        ).encode("utf-8")
        self.blobs[compute_digest(data)] = data
        return Descriptor(
            mediaType="application/vnd.oci.image.index.v1+json",
            digest=compute_digest(data),
            size=len(data),
        )

    def fetch(self, ctx, descriptor: Descriptor) -> bytes:
        return self.blobs[descriptor.digest]


@pytest.fixture
def store() -> Store:
    return Store()


class FakeRegistry:
    """Minimal OCI distribution API, served through httpx.MockTransport"""

    BLOB_UPLOAD = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<id>[^/]*)$")
    CONTENT = re.compile(r"^/v2/(?P<name>.+)/(?P<kind>blobs|manifests)/(?P<ref>[^/]+)$")

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, tuple[str, bytes]] = {}
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle_request)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v2/":
            return httpx.Response(200)
        if match := self.BLOB_UPLOAD.match(path):
            if request.method == "POST":
                return httpx.Response(
                    202,
                    headers={"Location": f"/v2/{match['name']}/blobs/uploads/{uuid.uuid4()}"},
                )
            digest = request.url.params["digest"]
            if compute_digest(request.content) != digest:
                return httpx.Response(400)
            self.blobs[digest] = request.content
            return httpx.Response(201)
        if match := self.CONTENT.match(path):
            if match["kind"] == "blobs":
                data = self.blobs.get(match["ref"])
                if data is None:
                    return httpx.Response(404)
                return httpx.Response(200, content=b"" if request.method == "HEAD" else data)
            return self._manifest(request, match["ref"])
        return httpx.Response(404)

    def _manifest(self, request: httpx.Request, reference: str) -> httpx.Response:
        if request.method == "PUT":
            digest = compute_digest(request.content)
            entry = (request.headers["content-type"], request.content)
            self.manifests[digest] = entry
            self.manifests[reference] = entry
            return httpx.Response(201, headers={"Docker-Content-Digest": digest})
        if reference not in self.manifests:
            return httpx.Response(404)
        media_type, data = self.manifests[reference]
        return httpx.Response(
            200,
            content=b"" if request.method == "HEAD" else data,
            headers={
                "Content-Type": media_type,
                "Docker-Content-Digest": compute_digest(data),
            },
        )


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()
