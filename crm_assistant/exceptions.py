"""
Assistant exception hierarchy.

Each synchronous error carries the HTTP status the API layer answers with;
errors raised after streaming has started are reported in-stream instead.
"""
from typing import Optional


class AssistantError(Exception):
    """Base class for errors surfaced to the caller of a turn."""
    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ChatRequestError(AssistantError):
    """Inbound request is missing a required field or is not valid JSON."""
    status_code = 400
    public_message = "Message is required"


class ConfigurationError(AssistantError):
    """Server misconfiguration, e.g. missing upstream credential."""
    status_code = 500
    public_message = "Anthropic API key not configured"


class UpstreamError(AssistantError):
    """Language-model provider returned a non-success status or broke mid-stream."""
    status_code = 502
    public_message = "Error calling Anthropic API"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class StoreError(AssistantError):
    """A read or write against a backing store failed."""
    status_code = 500
    public_message = "Error accessing conversation store"


class DataStoreError(StoreError):
    """The relational data store rejected a query or mutation."""
    public_message = "Data store error"


class ContextUnavailableError(AssistantError):
    """Every base-context fetch failed; the turn cannot be grounded."""
    status_code = 503
    public_message = "Business context unavailable"


class RelayStateError(RuntimeError):
    """Illegal streaming relay state transition."""
    pass


__all__ = [
    "AssistantError",
    "ChatRequestError",
    "ConfigurationError",
    "UpstreamError",
    "StoreError",
    "DataStoreError",
    "ContextUnavailableError",
    "RelayStateError",
]
