from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse, urlunparse

import httpx

from pyuor.context import Context
from pyuor.errors import AuthenticationError, FetchError
from pyuor.oci.descriptor import (
    MEDIA_KINDS,
    Descriptor,
    compute_digest,
)

if TYPE_CHECKING:
    from pyuor.oci.layer import Blob

logger = logging.getLogger(__name__)

DOCKER_HUB = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(MEDIA_KINDS)


def _clean_url(registry_url: str, plain_http: bool = False) -> str:
    if "://" not in registry_url:
        registry_url = f"{'http' if plain_http else 'https'}://{registry_url}"
    parts = urlparse(registry_url)
    if parts.netloc in ("docker.io", "index.docker.io"):
        parts = parts._replace(netloc=DOCKER_HUB)
    return urlunparse(parts).rstrip("/")


def _parse_www_auth(www_authenticate: str) -> dict[str, str]:
    """Parse the WWW-Authenticate header"""
    result = {}
    for item in www_authenticate.removeprefix("Bearer ").split(","):
        key, value = item.split("=", 1)
        result[key.strip()] = value.strip('"')
    return result


class BearerAuth(httpx.Auth):
    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


class Client:
    """Client for the OCI distribution API of a single registry.

    The HTTP session is opened, and authenticated, on first use.
    """

    def __init__(
        self,
        registry_url: str,
        username: str | None = None,
        password: str | None = None,
        registry_token: str | None = None,
        scope: str | None = None,
        plain_http: bool = False,
        insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.registry_url = _clean_url(registry_url, plain_http=plain_http)
        self.username = username
        self.password = password
        self.registry_token = registry_token
        self.scope = scope
        self.insecure = insecure
        self._transport = transport
        self._session: httpx.Client | None = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def session(self) -> httpx.Client:
        if self._session is None:
            session = httpx.Client(
                base_url=self.registry_url,
                follow_redirects=True,
                verify=not self.insecure,
                transport=self._transport,
            )
            try:
                session.auth = self._challenge(session)
            except BaseException:
                session.close()
                raise
            self._session = session
        return self._session

    def get(self, uri: str, **kwargs) -> httpx.Response:
        return self.session.get(uri, **kwargs)

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def _challenge(self, session: httpx.Client) -> httpx.Auth | None:
        """Pick the auth scheme the registry asks for on `/v2/`"""
        if self.registry_token:
            return BearerAuth(self.registry_token)
        response = session.get("/v2/")
        if response.status_code != 401:
            response.raise_for_status()
            return None
        www_authenticate = response.headers.get("WWW-Authenticate", "")
        if www_authenticate.startswith("Bearer "):
            challenge = _parse_www_auth(www_authenticate)
            logger.debug("Token challenge from %s: %s", self.registry_url, challenge)
            return BearerAuth(
                self._token(
                    session,
                    realm=challenge["realm"],
                    service=challenge.get("service"),
                    scope=self.scope or challenge.get("scope"),
                )
            )
        if self.password:
            return httpx.BasicAuth(self.username or "", self.password)
        raise AuthenticationError(
            f"{self.registry_url} requires authentication, "
            f"provide a username and/or password."
        )

    def _token(self, session: httpx.Client, realm: str, service, scope) -> str:
        """Request a bearer token, anonymously when no password is configured

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        params = {"service": service, "scope": scope}
        auth = httpx.USE_CLIENT_DEFAULT
        if self.password:
            params["client_id"] = self.username
            auth = httpx.BasicAuth(self.username or "", self.password)
        response = session.get(
            realm,
            params={k: v for k, v in params.items() if v is not None},
            auth=auth,
        )
        if response.status_code in (401, 403):
            if self.password:
                raise AuthenticationError(f"{self.registry_url} rejected the credentials")
            raise AuthenticationError(f"{self.registry_url} refused an anonymous token")
        response.raise_for_status()
        body = response.json()
        return body.get("token") or body["access_token"]

    def resolve(self, name: str, reference: str) -> Descriptor:
        """Resolve a tag or digest to the descriptor of the manifest it points at"""
        response = self.get(
            f"/v2/{name}/manifests/{reference}", headers={"Accept": MANIFEST_ACCEPT}
        )
        response.raise_for_status()
        data = response.content
        digest = response.headers.get("Docker-Content-Digest") or compute_digest(data)
        media_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        if media_type not in MEDIA_KINDS:
            # Registries that do not echo the media type still put it in the body
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("mediaType"):
                media_type = body["mediaType"]
        if not media_type:
            raise FetchError(
                f"{name}:{reference}: registry did not report a media type",
                digest=digest,
            )
        logger.debug("Resolved %s:%s to %s", name, reference, digest)
        return Descriptor(mediaType=media_type, digest=digest, size=len(data))

    def fetch(self, ctx: Context, name: str, descriptor: Descriptor) -> bytes:
        """Download the content of `descriptor`, checking `ctx` between chunks"""
        if descriptor.kind.composite:
            uri = f"/v2/{name}/manifests/{descriptor.digest}"
            headers = {"Accept": descriptor.mediaType}
        else:
            uri = f"/v2/{name}/blobs/{descriptor.digest}"
            headers = {}
        kwargs = {}
        if (remaining := ctx.remaining()) is not None:
            kwargs["timeout"] = remaining
        data = bytearray()
        with self.session.stream("GET", uri, headers=headers, **kwargs) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes():
                ctx.raise_if_cancelled(descriptor.digest)
                data.extend(chunk)
        return bytes(data)

    def exists(self, name: str, kind: str, reference: str) -> bool:
        response = self.session.head(f"/v2/{name}/{kind}/{reference}")
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    def push_blob(self, name: str, blob: bytes, digest: str) -> bool:
        """Upload a blob to repository `name`, False when it was already there

        Uses the monolithic POST then PUT upload.
        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-blobs
        """
        if self.exists(name, "blobs", digest):
            logger.info("Blob %s already in %s", digest, name)
            return False
        response = self.session.post(f"/v2/{name}/blobs/uploads/")
        response.raise_for_status()
        # The upload location may be relative to the registry or absolute
        response = self.session.put(
            response.headers["Location"],
            content=blob,
            headers={"Content-Type": "application/octet-stream"},
            params={"digest": digest},
        )
        response.raise_for_status()
        logger.debug("Uploaded %s (%d bytes) to %s", digest, len(blob), name)
        return True

    def push_manifest(
        self, name: str, descriptor: Blob, reference: str | None = None
    ) -> str:
        """Upload a manifest to repository `name`, tagged `reference` when given

        Returns the digest the registry stored the manifest under.
        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-manifests
        """
        if reference is None:
            reference = descriptor.digest
            if self.exists(name, "manifests", reference):
                logger.info("Manifest %s already in %s", reference, name)
                return descriptor.digest
        response = self.session.put(
            f"/v2/{name}/manifests/{reference}",
            content=descriptor.data,
            headers={"Content-Type": descriptor.mediaType},
        )
        if response.is_error and "json" in response.headers.get("Content-Type", ""):
            logger.error("Registry rejected manifest: %s", response.text)
        response.raise_for_status()
        return response.headers.get("Docker-Content-Digest", descriptor.digest)
