"""Keyless signing and verification of pushed collections

Both are delegated to the `cosign` binary, see https://docs.sigstore.dev/cosign/
"""
import logging
import os
import subprocess
from typing import Protocol

from pydantic import BaseModel

from pyuor.errors import SigningError
from pyuor.keychain import ANONYMOUS, Authenticator

logger = logging.getLogger(__name__)


class SigningOptions(BaseModel):
    rekor_url: str = "https://rekor.sigstore.dev"
    fulcio_url: str = "https://fulcio.sigstore.dev"
    oidc_issuer: str = "https://oauth2.sigstore.dev/auth"
    oidc_client_id: str = "sigstore"
    oidc_redirect_url: str = ""
    # Keyless mode was gated behind COSIGN_EXPERIMENTAL in cosign 1.x
    experimental: bool = True
    allow_insecure: bool = False
    verbose: bool = False
    timeout: float = 100
    certificate_identity_regexp: str = ".*"
    certificate_oidc_issuer_regexp: str = ".*"
    authenticator: Authenticator = ANONYMOUS


class Signer(Protocol):
    def sign(self, reference: str, options: SigningOptions):
        ...

    def verify(self, reference: str, options: SigningOptions):
        ...


class CosignSigner:
    def __init__(self, binary: str = "cosign"):
        self.binary = binary

    def _registry_args(self, options: SigningOptions) -> list[str]:
        args = []
        if options.allow_insecure:
            args.append("--allow-insecure-registry")
        if options.authenticator.registry_token:
            args.append(f"--registry-token={options.authenticator.registry_token}")
        else:
            username, password = options.authenticator.credentials()
            if username and password:
                args += [
                    f"--registry-username={username}",
                    f"--registry-password={password}",
                ]
        if options.verbose:
            args.append("--verbose")
        return args

    def _run(self, command: str, args: list[str], options: SigningOptions):
        env = dict(os.environ)
        if options.experimental:
            env["COSIGN_EXPERIMENTAL"] = "1"
        # Arguments may carry credentials, only the command and target are logged
        logger.debug("Running %s %s %s", self.binary, command, args[-1])
        try:
            result = subprocess.run(
                [self.binary, command, *args],
                check=True,
                capture_output=True,
                text=True,
                env=env,
                timeout=options.timeout,
            )
        except FileNotFoundError as e:
            raise SigningError(f"{self.binary} not found") from e
        except subprocess.TimeoutExpired as e:
            raise SigningError(
                f"{self.binary} {command} timed out after {options.timeout}s"
            ) from e
        except subprocess.CalledProcessError as e:
            raise SigningError(
                f"{self.binary} {command} failed: {(e.stderr or '').strip()}"
            ) from e
        logger.debug(result.stderr)

    def sign(self, reference: str, options: SigningOptions):
        args = [
            "--yes",
            f"--rekor-url={options.rekor_url}",
            f"--fulcio-url={options.fulcio_url}",
            f"--oidc-issuer={options.oidc_issuer}",
            f"--oidc-client-id={options.oidc_client_id}",
        ]
        if options.oidc_redirect_url:
            args.append(f"--oidc-redirect-url={options.oidc_redirect_url}")
        self._run("sign", [*args, *self._registry_args(options), reference], options)
        logger.info("Signed %s", reference)

    def verify(self, reference: str, options: SigningOptions):
        args = [
            f"--rekor-url={options.rekor_url}",
            f"--certificate-identity-regexp={options.certificate_identity_regexp}",
            "--certificate-oidc-issuer-regexp="
            f"{options.certificate_oidc_issuer_regexp}",
        ]
        self._run("verify", [*args, *self._registry_args(options), reference], options)
        logger.info("Verified %s", reference)
