"""Exceptions raised while decrypting arguments."""

from typing import Optional


class DecryptionError(Exception):
    """Base exception for argument decryption errors."""
    pass


class ConfigError(DecryptionError):
    """Configuration could not be read."""
    pass


class MarshalError(DecryptionError):
    """Outbound request could not be built."""
    pass


class SigningError(DecryptionError):
    """Authorization token could not be signed."""
    pass


class TransportError(DecryptionError):
    """No usable response from the decryption service."""
    pass


class DeadlineExceeded(TransportError):
    """Call ran out of time before the service answered."""
    pass


class ServiceError(DecryptionError):
    """Decryption service answered with an error status."""

    def __init__(self, status: int, body: Optional[str] = None):
        self.status = status
        self.body = body or ""
        message = f"decryption service responded with status code {status}"
        if self.body:
            message = f"{message}: {self.body[:200]}"
        super().__init__(message)


class ProtocolError(DecryptionError):
    """Response did not have the expected shape."""
    pass
