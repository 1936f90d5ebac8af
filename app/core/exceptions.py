"""Domain errors raised by the sync layer.

Webhook paths translate these to HTTP status codes; calendar push/pull
catch them and record the failure instead of raising.
"""


class SyncError(Exception):
    """Base class for external sync failures."""


class NotConnected(SyncError):
    """No usable credential exists for the organization/provider."""


class AuthExpired(SyncError):
    """The stored refresh token was rejected; the user must reconnect."""


class UnknownAgent(SyncError):
    """No active voice agent connection matches the request."""


class InvalidSignature(SyncError):
    """Webhook signature or timestamp did not verify."""


class MalformedPayload(SyncError):
    """A required field is missing or unparseable."""

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Missing {field}")


class UpstreamUnavailable(SyncError):
    """Provider API timed out or returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
