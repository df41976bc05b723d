from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import Field

from pyuor.oci.descriptor import ANNOTATION_TITLE, Descriptor, compute_digest

if TYPE_CHECKING:
    from pyuor.oci.client import Client

DEFAULT_MEDIA_TYPE = "application/octet-stream"


class Blob(Descriptor):
    """Descriptor that carries its content, for pushing"""

    data: bytes | None = Field(default=None, exclude=True, repr=False)

    def push(self, name: str, client: Client):
        if self.data is None:
            raise ValueError(f"Missing {self.__class__.__name__}.data")
        client.push_blob(name=name, blob=self.data, digest=self.digest)


class Layer(Blob):
    @classmethod
    def from_path(cls, path: Path, root: Path) -> Layer:
        """Create a new layer containing a single file, titled by its path under root"""
        if not path.is_file():
            raise ValueError(f"{path} is not a file")
        data = path.read_bytes()
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(
            mediaType=media_type or DEFAULT_MEDIA_TYPE,
            digest=compute_digest(data),
            size=len(data),
            annotations={ANNOTATION_TITLE: path.relative_to(root).as_posix()},
            data=data,
        )
