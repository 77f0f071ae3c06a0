"""
Error taxonomy for the gateway.

Every error carries the HTTP status the API layer answers with when the
failure happens before the stream opens. Provider errors that happen after
the stream opens are reported to the client as an error frame instead.
"""


class GatewayError(Exception):
    """Base class for all gateway failures."""
    status_code = 500


class ValidationError(GatewayError):
    """Malformed request (empty message, bad payload)."""
    status_code = 400


class AuthorizationError(GatewayError):
    """Caller does not own the conversation (or is unknown)."""
    status_code = 403


class NotFoundError(GatewayError):
    """Conversation does not exist."""
    status_code = 404


class QuotaExceededError(GatewayError):
    """User has reached their token limit."""
    status_code = 429


class ConfigurationError(GatewayError):
    """Unknown provider, or a provider with no credentials configured."""
    status_code = 400


class ProviderError(GatewayError):
    """Network or protocol failure while generating."""
    status_code = 502

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class SinkClosedError(RuntimeError):
    """A frame was sent after the turn already ended."""
