"""Categorized errors. Each carries a kind and a surface and maps to one HTTP status."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    STORAGE_UNAVAILABLE = "storage_unavailable"


STATUS_BY_KIND = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}

_DEFAULT_MESSAGES = {
    ErrorKind.BAD_REQUEST: "The request couldn't be processed. Please check your input and try again.",
    ErrorKind.UNAUTHORIZED: "You need to sign in before continuing.",
    ErrorKind.FORBIDDEN: "You don't have access to this resource.",
    ErrorKind.NOT_FOUND: "The requested resource was not found.",
    ErrorKind.STORAGE_UNAVAILABLE: "Storage is temporarily unavailable. Please try again later.",
}


class FeedbackError(Exception):
    """Base error; `code` is `<kind>:<surface>`, e.g. `not_found:chat`."""

    kind: ErrorKind = ErrorKind.BAD_REQUEST

    def __init__(self, surface: str = "api", message: str | None = None) -> None:
        self.surface = surface
        self.message = message or _DEFAULT_MESSAGES[self.kind]
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return f"{self.kind.value}:{self.surface}"

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class BadRequest(FeedbackError):
    kind = ErrorKind.BAD_REQUEST


class Unauthorized(FeedbackError):
    kind = ErrorKind.UNAUTHORIZED


class Forbidden(FeedbackError):
    kind = ErrorKind.FORBIDDEN


class NotFound(FeedbackError):
    kind = ErrorKind.NOT_FOUND


class StorageUnavailable(FeedbackError):
    """Durable store unreachable: fatal to the request, not to the process."""

    kind = ErrorKind.STORAGE_UNAVAILABLE

    def __init__(self, surface: str = "storage", message: str | None = None) -> None:
        super().__init__(surface, message)
