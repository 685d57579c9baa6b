"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure categories shared by result values and domain errors."""

    UNCONFIGURED = "unconfigured"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    PLATFORM_REJECTED = "platform_rejected"
    MALFORMED_RESPONSE = "malformed_response"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_CLAIMED = "already_claimed"
    INTERNAL = "internal"


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class LinkingError(DomainError):
    """Base class for linking-code failures the user can act on."""

    code: str = "LINK_CODE_ERROR"
    http_status: int = 400
    message: str = "Linking failed"

    kind = ErrorKind.INTERNAL


@dataclass(eq=False)
class LinkCodeNotFound(LinkingError):
    code: str = "LINK_CODE_NOT_FOUND"
    http_status: int = 404
    message: str = "Invalid linking code. Send /link to the bot to get a new one."

    kind = ErrorKind.NOT_FOUND


@dataclass(eq=False)
class LinkCodeExpired(LinkingError):
    code: str = "LINK_CODE_EXPIRED"
    http_status: int = 410
    message: str = "This linking code has expired. Send /link to the bot to get a new one."

    kind = ErrorKind.EXPIRED


@dataclass(eq=False)
class LinkCodeAlreadyClaimed(LinkingError):
    code: str = "LINK_CODE_ALREADY_CLAIMED"
    http_status: int = 409
    message: str = "This linking code has already been used."

    kind = ErrorKind.ALREADY_CLAIMED


@dataclass(eq=False)
class LinkCodeUnavailable(LinkingError):
    """Raised when no unique code could be generated."""

    code: str = "LINK_CODE_UNAVAILABLE"
    http_status: int = 503
    message: str = "Could not generate a linking code. Please try again."
