import re
from dataclasses import dataclass

from pyuor.errors import InvalidReference
from pyuor.oci.descriptor import normalize_digest

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

# ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pulling-manifests
COMPONENT_PATTERN = r"[a-z0-9]+(?:(?:\.|_|__|-+)[a-z0-9]+)*"
REPOSITORY_PATTERN = rf"{COMPONENT_PATTERN}(?:/{COMPONENT_PATTERN})*"
TAG_PATTERN = r"[a-zA-Z0-9_][a-zA-Z0-9._-]{0,127}"


@dataclass(frozen=True, slots=True)
class Reference:
    """Location of an artifact: `registry/repository[:tag][@digest]`"""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    def __str__(self):
        value = f"{self.registry}/{self.repository}"
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value

    @property
    def reference(self) -> str:
        """The tag or digest to use in the manifests endpoint, digest preferred"""
        return self.digest or self.tag or DEFAULT_TAG

    @classmethod
    def parse(cls, value: str) -> "Reference":
        """Parse an artifact reference

        A first path component with a "." or ":" in it, or "localhost", is a
        registry host. Anything else is a Docker Hub repository.
        """
        remainder = value.removeprefix("oci://")
        digest = None
        if "@" in remainder:
            remainder, digest = remainder.split("@", 1)
            try:
                digest = normalize_digest(digest)
            except ValueError as e:
                raise InvalidReference(f"{value}: {e}") from e

        tag = None
        name, sep, maybe_tag = remainder.rpartition(":")
        if sep and "/" not in maybe_tag:
            remainder, tag = name, maybe_tag
            if not re.fullmatch(TAG_PATTERN, tag):
                raise InvalidReference(f"{value}: invalid tag {tag!r}")

        host, sep, repository = remainder.partition("/")
        if not sep or not ("." in host or ":" in host or host == "localhost"):
            host, repository = DEFAULT_REGISTRY, remainder
            if "/" not in repository:
                repository = f"library/{repository}"
        if not re.fullmatch(REPOSITORY_PATTERN, repository):
            raise InvalidReference(f"{value}: invalid repository {repository!r}")

        if tag is None and digest is None:
            tag = DEFAULT_TAG
        return cls(registry=host, repository=repository, tag=tag, digest=digest)
