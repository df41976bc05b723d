import json
from functools import cached_property
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from pyuor.errors import ParseError
from pyuor.oci.descriptor import (
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
    MediaKind,
    compute_digest,
    media_kind,
)
from pyuor.oci.layer import Blob


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    architecture: str
    os: str
    osVersion: str | None = None
    osFeatures: list[str] | None = None
    variant: str | None = None


class PlatformDescriptor(Descriptor):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    platform: Platform | None = None


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    model_config = ConfigDict(extra="ignore")

    schemaVersion: Literal[2] = 2
    mediaType: str | None = MEDIA_TYPE_IMAGE_MANIFEST
    artifactType: str | None = None
    config: Descriptor
    layers: list[Descriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    @cached_property
    def descriptor(self) -> Blob:
        """Serialize the manifest, returning a descriptor that carries the bytes"""
        data = self.model_dump_json(exclude_none=True).encode("utf-8")
        return Blob(
            mediaType=self.mediaType or MEDIA_TYPE_IMAGE_MANIFEST,
            digest=compute_digest(data),
            size=len(data),
            data=data,
        )


class Index(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(extra="ignore")

    schemaVersion: Literal[2] = 2
    mediaType: str | None = MEDIA_TYPE_IMAGE_INDEX
    artifactType: str | None = None
    manifests: list[PlatformDescriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    location = ".".join(str(x) for x in error["loc"])
    if location:
        return f"{location}: {error['msg']}"
    return error["msg"]


def _load_object(data: bytes, kind: MediaKind) -> dict:
    try:
        raw = json.loads(data)
    except ValueError as e:
        raise ParseError(f"invalid {kind.value}: {e}") from e
    if not isinstance(raw, dict):
        raise ParseError(f"invalid {kind.value}: expected a JSON object")
    if "schemaVersion" not in raw:
        raise ParseError(f"invalid {kind.value}: schemaVersion is required")
    media_type = raw.get("mediaType")
    if media_type is not None and media_kind(media_type) is not kind:
        raise ParseError(f"invalid {kind.value}: unexpected mediaType {media_type!r}")
    return raw


def parse_manifest(data: bytes) -> Manifest:
    """Decode image manifest bytes

    Unknown fields are ignored, `config` is required and every descriptor
    must carry a media type, digest and size.
    """
    raw = _load_object(data, MediaKind.MANIFEST)
    try:
        return Manifest.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"invalid manifest: {_first_error(e)}") from e


def parse_index(data: bytes) -> Index:
    """Decode image index bytes"""
    raw = _load_object(data, MediaKind.INDEX)
    try:
        return Index.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"invalid index: {_first_error(e)}") from e
