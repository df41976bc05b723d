import httpx
import pytest

from pyuor.errors import AuthenticationError, FetchError
from pyuor.oci.client import Client, _clean_url, _parse_www_auth
from pyuor.oci.config import EmptyConfig
from pyuor.oci.manifest import Manifest


@pytest.mark.parametrize(
    "url,plain_http,expected",
    [
        ("localhost:5000", False, "https://localhost:5000"),
        ("localhost:5000", True, "http://localhost:5000"),
        ("http://localhost:5000/", False, "http://localhost:5000"),
        ("docker.io", False, "https://registry-1.docker.io"),
        ("index.docker.io", False, "https://registry-1.docker.io"),
    ],
)
def test_clean_url(url, plain_http, expected):
    assert _clean_url(url, plain_http=plain_http) == expected


def test_parse_www_auth():
    assert _parse_www_auth(
        'Bearer realm="https://auth.example.com/token",service="registry.example.com",'
        'scope="repository:test:pull"'
    ) == {
        "realm": "https://auth.example.com/token",
        "service": "registry.example.com",
        "scope": "repository:test:pull",
    }


def _token_registry(seen, token_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.host == "auth.example.com":
            if token_status != 200:
                return httpx.Response(token_status)
            return httpx.Response(200, json={"token": "secret-token"})
        if request.headers.get("Authorization") != "Bearer secret-token":
            return httpx.Response(
                401,
                headers={
                    "WWW-Authenticate": 'Bearer realm="https://auth.example.com/token",'
                    'service="registry.example.com"'
                },
            )
        return httpx.Response(200, json={"tags": ["latest"]})

    return httpx.MockTransport(handler)


def test_token_authentication():
    seen = []
    with Client(
        "registry.example.com",
        username="user",
        password="pass",
        scope="repository:test:pull",
        transport=_token_registry(seen),
    ) as client:
        response = client.get("/v2/test/tags/list")
    assert response.json() == {"tags": ["latest"]}

    token_request = seen[1]
    assert token_request.url.params["service"] == "registry.example.com"
    assert token_request.url.params["scope"] == "repository:test:pull"
    assert token_request.url.params["client_id"] == "user"
    assert token_request.headers["Authorization"].startswith("Basic ")


def test_anonymous_token():
    seen = []
    with Client("registry.example.com", transport=_token_registry(seen)) as client:
        client.get("/v2/test/tags/list").raise_for_status()
    assert "Authorization" not in seen[1].headers


def test_authentication_rejected():
    with Client(
        "registry.example.com",
        username="user",
        password="wrong",
        transport=_token_registry([], token_status=401),
    ) as client:
        with pytest.raises(AuthenticationError, match="rejected"):
            client.get("/v2/")


def test_registry_token():
    seen = []
    with Client(
        "registry.example.com",
        registry_token="secret-token",
        transport=_token_registry(seen),
    ) as client:
        client.get("/v2/test/tags/list").raise_for_status()
    assert len(seen) == 1


def test_resolve(registry):
    manifest = Manifest(config=EmptyConfig()).descriptor
    registry.manifests["latest"] = (manifest.mediaType, manifest.data)
    with Client("localhost:5000", plain_http=True, transport=registry.transport) as client:
        descriptor = client.resolve("test", "latest")
    assert descriptor.digest == manifest.digest
    assert descriptor.mediaType == manifest.mediaType
    assert descriptor.size == manifest.size


@pytest.mark.parametrize("body", [b"not json", b'{"schemaVersion": 2}'])
def test_resolve_without_media_type(body):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/":
            return httpx.Response(200)
        return httpx.Response(200, content=body)

    with Client(
        "localhost:5000", plain_http=True, transport=httpx.MockTransport(handler)
    ) as client:
        with pytest.raises(FetchError, match="test:latest: registry did not report"):
            client.resolve("test", "latest")


def test_push_blob(registry):
    config = EmptyConfig()
    with Client("localhost:5000", plain_http=True, transport=registry.transport) as client:
        config.push(name="test", client=client)
        assert registry.blobs == {config.digest: b"{}"}
        count = len(registry.requests)
        config.push(name="test", client=client)
    # Second push stops after the HEAD request
    assert len(registry.requests) == count + 1
    assert registry.requests[-1].method == "HEAD"


def test_push_manifest(registry):
    manifest = Manifest(config=EmptyConfig()).descriptor
    with Client("localhost:5000", plain_http=True, transport=registry.transport) as client:
        client.push_manifest("test", manifest, reference="v1")
    assert registry.manifests["v1"] == (manifest.mediaType, manifest.data)
    assert registry.manifests[manifest.digest] == (manifest.mediaType, manifest.data)
