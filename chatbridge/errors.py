"""Error taxonomy for the bridge."""

from __future__ import annotations


class ChatBridgeError(Exception):
    """Structured error raised by the bridge."""

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class ConfigurationError(ChatBridgeError):
    """No base URL could be resolved."""

    def __init__(self, message: str = "LiteLLM not configured"):
        super().__init__(message, code="not_configured")


class RemoteError(ChatBridgeError):
    """
    The backend answered with a non-success status.

    The message is the raw response body, verbatim.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, code="remote_error")
        self.status_code = status_code


class ValidationError(ChatBridgeError):
    """The outgoing request is structurally invalid."""

    def __init__(self, message: str):
        super().__init__(message, code="validation_error")


class DecodeError(ChatBridgeError):
    """A single stream event or tool-call body could not be decoded."""

    def __init__(self, message: str):
        super().__init__(message, code="decode_error")
