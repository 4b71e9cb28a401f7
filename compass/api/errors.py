"""Structured errors raised by the API client."""
from __future__ import annotations

from typing import Any, Mapping, Optional

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection and try again."


class ApiError(Exception):
    """A failed API call, carrying the message to show the user unchanged."""

    def __init__(
        self,
        user_message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.status_code = status_code
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status_code={self.status_code!r}, code={self.code!r}, user_message={self.user_message!r})"


class NotFoundError(ApiError):
    """HTTP 404; callers decide whether absence is an error."""


def get_user_friendly_error(status: Optional[int], payload: Optional[Mapping[str, Any]] = None) -> str:
    server_message = None
    if payload:
        server_message = payload.get("error") or payload.get("message")
    if server_message is not None and not isinstance(server_message, str):
        server_message = str(server_message)

    if status == 400:
        return server_message or "Invalid request. Please check your input."
    if status == 401:
        return "Authentication required. Please log in again."
    if status == 403:
        return "You do not have permission to perform this action."
    if status == 404:
        return server_message or "The requested resource was not found."
    if status == 422:
        return server_message or "One or more fields need attention."
    if status == 429:
        return "Too many requests. Please slow down and retry shortly."
    return server_message or GENERIC_ERROR_MESSAGE


def error_from_response(status: int, payload: Optional[Mapping[str, Any]]) -> ApiError:
    message = get_user_friendly_error(status, payload)
    code = payload.get("code") if payload else None
    details = payload.get("details") if payload else None
    error_cls = NotFoundError if status == 404 else ApiError
    return error_cls(message, status_code=status, code=code, details=details)
