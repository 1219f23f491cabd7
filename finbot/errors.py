"""Error types and classification shared across finbot."""

# Messages from the protocol layer's multi-device encryption that show up
# whenever a peer's session is stale. They resolve themselves on the next
# key exchange and must not be reported as failures.
TRANSIENT_PROTOCOL_PATTERNS = ("Bad MAC", "decrypt", "Session error")


class FinbotError(Exception):
    """Base class for finbot errors."""


class ConfigurationError(FinbotError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class CredentialStoreError(FinbotError):
    """Persisted credentials could not be read or written."""


class NotConnectedError(FinbotError):
    """An outbound operation was attempted while the session is not open."""


class TransportError(FinbotError):
    """The protocol transport failed to perform an operation."""


class HandlerError(FinbotError):
    """The message handler could not be loaded."""


def is_transient_protocol_error(error: BaseException | str | None) -> bool:
    """Return True if the error is known protocol noise (bad MAC, decrypt)."""
    if error is None:
        return False
    msg = error if isinstance(error, str) else str(error)
    return any(pattern in msg for pattern in TRANSIENT_PROTOCOL_PATTERNS)
