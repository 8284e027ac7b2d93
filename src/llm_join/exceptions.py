"""Exceptions raised by llm_join."""

from __future__ import annotations

from typing import Optional


class LLMJoinError(Exception):
    """Base class for every error raised by this package."""


class InvalidInputError(LLMJoinError, ValueError):
    """Raised when a table or key column cannot be used as given."""


class EmptyMessageError(LLMJoinError, ValueError):
    """Raised when an empty prompt would be sent to the LLM."""


class ConfigurationError(LLMJoinError):
    """Raised when the credential file is missing, unreadable or incomplete."""


class LLMError(LLMJoinError):
    """Base class for failures talking to the chat-completion endpoint."""


class AuthenticationError(LLMError):
    """HTTP 401 from the endpoint."""


class EndpointNotFoundError(LLMError):
    """HTTP 404 from the endpoint."""


class ServiceError(LLMError):
    """Any other non-200 response."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"API request failed with status {status_code}: {body}")


class LLMConnectionError(LLMError, ConnectionError):
    """Transport failure or timeout before a response arrived."""


class MalformedResponseError(LLMError):
    """HTTP 200 whose body is not the expected chat-completion shape."""

    def __init__(self, reason: str, body: Optional[str] = None):
        self.reason = reason
        self.body = body
        message = f"Failed to parse response: {reason}"
        if body is not None:
            message += f"\nRaw response: {body}"
        super().__init__(message)


class ParseError(LLMJoinError):
    """Raised when the connector text returned by the LLM is not a two-column table."""
