from pydantic import Field

from pyuor.oci.layer import Blob

UOR_CONFIG_MEDIA_TYPE = "application/vnd.uor.config.v1+json"


class EmptyConfig(Blob):
    mediaType: str = UOR_CONFIG_MEDIA_TYPE
    digest: str = (
        "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
    )
    size: int = 2
    data: bytes | None = Field(default=b"{}", exclude=True, repr=False)
