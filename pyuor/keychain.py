"""Registry credentials from docker-style config files

ref: https://docs.docker.com/reference/cli/docker/login/#credential-stores
"""
import base64
import binascii
import json
import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from pyuor.errors import KeychainError
from pyuor.oci.reference import Reference

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "index.docker.io"
# Docker stores Docker Hub credentials under the legacy v1 index URL
DEFAULT_AUTH_KEY = "https://index.docker.io/v1/"


@dataclass(frozen=True, slots=True)
class Resource:
    registry: str
    repository: str

    def __str__(self):
        return f"{self.registry}/{self.repository}"

    @classmethod
    def from_reference(cls, reference: Reference) -> "Resource":
        return cls(registry=reference.registry, repository=reference.repository)


class Authenticator(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str | None = None
    password: str | None = None
    auth: str | None = None
    identity_token: str | None = None
    registry_token: str | None = None

    @property
    def anonymous(self) -> bool:
        return not any(
            (
                self.username,
                self.password,
                self.auth,
                self.identity_token,
                self.registry_token,
            )
        )

    def credentials(self) -> tuple[str | None, str | None]:
        """Username and password, decoded from `auth` when not set directly"""
        if self.username or self.password or not self.auth:
            return self.username, self.password
        try:
            decoded = base64.b64decode(self.auth, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise KeychainError("invalid auth value in credential config") from e
        username, _, password = decoded.partition(":")
        return username, password

    @classmethod
    def from_config(cls, entry: dict) -> "Authenticator":
        return cls(
            username=entry.get("username") or None,
            password=entry.get("password") or None,
            auth=entry.get("auth") or None,
            identity_token=entry.get("identitytoken") or None,
            registry_token=entry.get("registrytoken") or None,
        )


ANONYMOUS = Authenticator()


class Keychain(Protocol):
    def resolve(self, resource: Resource) -> Authenticator:
        ...


class CredentialCache:
    """Lazily loaded credential config files, keyed by path"""

    def __init__(self):
        self._auths: dict[Path, dict[str, dict]] = {}
        self._lock = threading.Lock()

    def auths(self, path: Path) -> dict[str, dict]:
        with self._lock:
            if path not in self._auths:
                self._auths[path] = self._load(path)
            return self._auths[path]

    @staticmethod
    def _load(path: Path) -> dict[str, dict]:
        logger.debug("Loading credentials from %s", path)
        try:
            config = json.loads(path.read_text())
        except OSError as e:
            raise KeychainError(f"reading {path}: {e}") from e
        except ValueError as e:
            raise KeychainError(f"parsing {path}: {e}") from e
        if not isinstance(config, dict):
            raise KeychainError(f"parsing {path}: expected a JSON object")
        auths = config.get("auths") or {}
        if not isinstance(auths, dict):
            raise KeychainError(f"parsing {path}: auths must be an object")
        return {k: v for k, v in auths.items() if isinstance(v, dict)}


def _hostname(key: str) -> str:
    return key.removeprefix("https://").removeprefix("http://").split("/", 1)[0]


class ConfigFileKeychain:
    def __init__(self, path: Path, cache: CredentialCache | None = None):
        self.path = Path(path)
        self.cache = cache or CredentialCache()

    def resolve(self, resource: Resource) -> Authenticator:
        """Match the full reference first, then only the registry host"""
        auths = self.cache.auths(self.path)
        for key, by_host in ((str(resource), False), (resource.registry, True)):
            if key == DEFAULT_REGISTRY:
                key = DEFAULT_AUTH_KEY
            entry = auths.get(key)
            if entry is None and by_host:
                host = _hostname(key)
                entry = next(
                    (v for k, v in auths.items() if _hostname(k) == host), None
                )
            if entry is not None:
                authenticator = Authenticator.from_config(entry)
                if not authenticator.anonymous:
                    logger.debug("Using credentials for %s from %s", key, self.path)
                    return authenticator
        return ANONYMOUS


class MultiKeychain:
    """Return the first credentials any of the keychains can resolve"""

    def __init__(self, keychains: Iterable[Keychain]):
        self.keychains = list(keychains)

    def resolve(self, resource: Resource) -> Authenticator:
        for keychain in self.keychains:
            authenticator = keychain.resolve(resource)
            if not authenticator.anonymous:
                return authenticator
        return ANONYMOUS


def build_keychain(paths: Iterable[Path]) -> MultiKeychain:
    cache = CredentialCache()
    return MultiKeychain(ConfigFileKeychain(Path(p), cache) for p in paths)


def default_keychain() -> MultiKeychain:
    """Keychain for the docker config of the current user, if there is one"""
    config_dir = Path(os.environ.get("DOCKER_CONFIG", Path.home() / ".docker"))
    path = config_dir / "config.json"
    if not path.is_file():
        return MultiKeychain([])
    return build_keychain([path])
