"""
Exception classes for LocalChat.

Transport and daemon failures derive from ``LocalChatError``; the session
controller turns them into the human-readable strings kept in its state.
"""

from typing import Any, Dict, Optional, Type


class LocalChatError(Exception):
    """Base exception for LocalChat errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message


class LocalChatConnectionError(LocalChatError):
    """The inference daemon could not be reached."""

    def __init__(self, message: str = "Cannot reach the inference daemon") -> None:
        super().__init__(message)


class LocalChatTimeoutError(LocalChatError):
    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message)


class LocalChatAPIError(LocalChatError):
    """The daemon answered with an error status."""

    default_status: Optional[int] = None

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, status_code or self.default_status, response)


class LocalChatAuthenticationError(LocalChatAPIError):
    default_status = 401


class LocalChatPermissionError(LocalChatAPIError):
    default_status = 403


class LocalChatNotFoundError(LocalChatAPIError):
    """Unknown model or endpoint."""

    default_status = 404


class LocalChatRateLimitError(LocalChatAPIError):
    default_status = 429


class LocalChatServerError(LocalChatAPIError):
    """The daemon or its model runner failed."""

    default_status = 500


class LocalChatValidationError(LocalChatError):
    """Invalid request or configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=422)


class ModelLoadError(LocalChatError):
    """The model could not be downloaded or initialized."""


class LocalChatStreamError(LocalChatError):
    """A response stream was malformed or ended early."""


class GenerationCancelled(LocalChatError):
    """A generation was stopped by the user or superseded by a new one."""

    def __init__(self, message: str = "Generation cancelled") -> None:
        super().__init__(message)


_STATUS_ERRORS: Dict[int, Type[LocalChatAPIError]] = {
    401: LocalChatAuthenticationError,
    403: LocalChatPermissionError,
    404: LocalChatNotFoundError,
    429: LocalChatRateLimitError,
}


def raise_for_status(status_code: int, message: str, response: Optional[Dict[str, Any]] = None) -> None:
    """Raise the exception matching an HTTP error status; no-op below 400."""
    if status_code < 400:
        return
    if status_code == 422:
        raise LocalChatValidationError(message)
    if status_code >= 500:
        raise LocalChatServerError(message, status_code, response)
    error_class = _STATUS_ERRORS.get(status_code, LocalChatAPIError)
    raise error_class(message, status_code, response)
