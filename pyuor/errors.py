class LoadError(Exception):
    """Base class for failures while loading a manifest tree into a collection."""

    def __init__(self, message: str, digest: str | None = None):
        super().__init__(message)
        self.message = message
        self.digest = digest

    def __str__(self):
        if self.digest is None:
            return self.message
        return f"{self.digest}: {self.message}"


class FetchError(LoadError):
    """Raised when the content for a descriptor could not be fetched."""


class IntegrityError(LoadError):
    """Raised when fetched content does not match the requested digest."""


class ParseError(LoadError):
    """Raised when manifest content is malformed or unsupported."""


class CancellationError(LoadError):
    """Raised when the context was cancelled or its deadline passed."""


class AuthenticationError(Exception):
    """Raised when authentication fails."""


class KeychainError(Exception):
    """Raised when a credential config file can not be read."""


class SigningError(Exception):
    """Raised when signing or verifying an artifact fails."""


class InvalidReference(ValueError):
    """Raised for artifact references that can not be parsed."""
