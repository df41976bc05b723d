from functools import cached_property
from pathlib import Path
from typing import Literal

import httpx
from pydantic import BaseModel, Field

from pyuor.keychain import Resource, build_keychain, default_keychain
from pyuor.oci.client import Client
from pyuor.oci.reference import Reference
from pyuor.sign import SigningOptions

LogLevel = Literal["debug", "info", "warning", "error"]


class RegistryOptions(BaseModel):
    """Settings shared by every command that talks to a registry"""

    configs: list[Path] = []
    plain_http: bool = False
    insecure: bool = False
    log_level: LogLevel = "info"
    timeout: float | None = Field(default=None, gt=0)

    def keychain(self):
        if self.configs:
            return build_keychain(self.configs)
        return default_keychain()

    def client(
        self,
        reference: Reference,
        actions: str = "pull",
        transport: httpx.BaseTransport | None = None,
    ) -> Client:
        authenticator = self.keychain().resolve(Resource.from_reference(reference))
        username, password = authenticator.credentials()
        return Client(
            registry_url=reference.registry,
            username=username,
            password=password,
            registry_token=authenticator.registry_token,
            scope=f"repository:{reference.repository}:{actions}",
            plain_http=self.plain_http,
            insecure=self.insecure,
            transport=transport,
        )

    def signing_options(self, reference: Reference) -> SigningOptions:
        return SigningOptions(
            allow_insecure=self.plain_http or self.insecure,
            verbose=self.log_level == "debug",
            authenticator=self.keychain().resolve(Resource.from_reference(reference)),
        )


class PushOptions(RegistryOptions):
    destination: str
    sign: bool = False

    @cached_property
    def reference(self) -> Reference:
        return Reference.parse(self.destination)


class PullOptions(RegistryOptions):
    source: str
    verify: bool = False
    max_workers: int = Field(default=1, ge=1)

    @cached_property
    def reference(self) -> Reference:
        return Reference.parse(self.source)
