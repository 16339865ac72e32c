"""Error taxonomy shared by the REST client, providers and OTP flow."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class ChatLogError(Exception):
    """Base error for failed calls against the chat backend."""

    status: int | None = None

    def __init__(self, message: str, status: int | None = None) -> None:
        if status is not None:
            self.status = status
        self.message = message
        super().__init__(message)


class ValidationError(ChatLogError):
    """A required field is missing or malformed (HTTP 400)."""

    status = 400


class UnauthorizedError(ChatLogError):
    """The principal header is missing or the credential was rejected (HTTP 401)."""

    status = 401


class NotFoundError(ChatLogError):
    """The requested record does not exist for this principal (HTTP 404)."""

    status = 404


class ServerError(ChatLogError):
    """Unhandled failure on the server side (HTTP 5xx)."""

    status = 500


class ProviderError(Exception):
    """Raised when a model provider call fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class OtpDeliveryError(Exception):
    """Raised when an OTP could not be delivered by email or SMS."""


_STATUS_ERRORS: dict[int, type[ChatLogError]] = {
    400: ValidationError,
    401: UnauthorizedError,
    404: NotFoundError,
}


def error_for_status(status: int, message: str) -> ChatLogError:
    """Map an HTTP status to the matching error instance."""
    cls = _STATUS_ERRORS.get(status)
    if cls is not None:
        return cls(message)
    if status >= 500:
        return ServerError(message, status=status)
    return ChatLogError(message, status=status)


class ApiEnvelope(BaseModel):
    """Standard response body: ``{data?, error?, timestamp}``."""

    data: Any = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def ok(self) -> bool:
        return self.error is None
