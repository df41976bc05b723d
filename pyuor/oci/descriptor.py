import hashlib
import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyuor.errors import IntegrityError

MEDIA_TYPE_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_DOCKER_MANIFEST_LIST = (
    "application/vnd.docker.distribution.manifest.list.v2+json"
)

ANNOTATION_TITLE = "org.opencontainers.image.title"

# ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md#digests
DIGEST_RE = re.compile(
    r"^(?P<algorithm>[a-z0-9]+(?:[+._-][a-z0-9]+)*):(?P<encoded>[a-zA-Z0-9=_-]+)$"
)
HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}


class MediaKind(Enum):
    LEAF = "leaf"
    MANIFEST = "manifest"
    INDEX = "index"

    @property
    def composite(self) -> bool:
        return self is not MediaKind.LEAF


MEDIA_KINDS = {
    MEDIA_TYPE_IMAGE_MANIFEST: MediaKind.MANIFEST,
    MEDIA_TYPE_DOCKER_MANIFEST: MediaKind.MANIFEST,
    MEDIA_TYPE_IMAGE_INDEX: MediaKind.INDEX,
    MEDIA_TYPE_DOCKER_MANIFEST_LIST: MediaKind.INDEX,
}


def media_kind(media_type: str) -> MediaKind:
    """Classify a media type, anything not a known manifest schema is a leaf"""
    return MEDIA_KINDS.get(media_type, MediaKind.LEAF)


def normalize_digest(value: str) -> str:
    match = DIGEST_RE.fullmatch(value)
    if not match:
        raise ValueError(f"invalid digest: {value!r}")
    algorithm, encoded = match["algorithm"], match["encoded"]
    if algorithm in HEX_LENGTHS:
        encoded = encoded.lower()
        if len(encoded) != HEX_LENGTHS[algorithm] or not re.fullmatch(
            "[0-9a-f]+", encoded
        ):
            raise ValueError(f"invalid {algorithm} digest: {value!r}")
    return f"{algorithm}:{encoded}"


def compute_digest(data: bytes, algorithm: str = "sha256") -> str:
    if algorithm not in HEX_LENGTHS:
        raise ValueError(f"unsupported digest algorithm: {algorithm}")
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    digest: str
    size: int = Field(ge=0)
    mediaType: str = Field(min_length=1)
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    artifactType: str | None = None

    @field_validator("digest")
    @classmethod
    def _normalize_digest(cls, value: str) -> str:
        return normalize_digest(value)

    @property
    def algorithm(self) -> str:
        return self.digest.split(":", 1)[0]

    @property
    def kind(self) -> MediaKind:
        return media_kind(self.mediaType)

    @property
    def title(self) -> str | None:
        if not self.annotations:
            return None
        return self.annotations.get(ANNOTATION_TITLE)

    def verify(self, data: bytes):
        """Check `data` is the content this descriptor points at"""
        if self.algorithm not in HEX_LENGTHS:
            raise IntegrityError(
                f"can not verify digest algorithm {self.algorithm!r}",
                digest=self.digest,
            )
        actual = compute_digest(data, self.algorithm)
        if actual != self.digest:
            raise IntegrityError(
                f"content digest mismatch, got {actual}", digest=self.digest
            )
        if self.size and len(data) != self.size:
            raise IntegrityError(
                f"content size mismatch, expected {self.size} got {len(data)}",
                digest=self.digest,
            )


def verify_digest(descriptor: Descriptor, data: bytes):
    descriptor.verify(data)
