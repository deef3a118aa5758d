from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    MISSING_TOKEN = "MISSING_TOKEN"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    NOT_FOUND = "NOT_FOUND"
    GENERIC = "GENERIC"


# Finer-grained reasons carried alongside GENERIC.
REASON_LOCKED = "LOCKED"
REASON_FORBIDDEN = "FORBIDDEN"
REASON_INVALID_TRANSITION = "INVALID_TRANSITION"
REASON_VALIDATION = "VALIDATION"
REASON_CONFLICT = "CONFLICT"


class MenuError(Exception):
    """Base error for the menu-request domain."""

    kind: ErrorKind = ErrorKind.GENERIC
    reason: Optional[str] = None

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if reason is not None:
            self.reason = reason


class TransitionRejected(MenuError):
    """A state-machine guard refused the transition."""

    reason = REASON_INVALID_TRANSITION


class RequestLocked(TransitionRejected):
    """The request is APPROVED and accepts no further writes."""

    reason = REASON_LOCKED


class DraftInvalid(MenuError):
    reason = REASON_VALIDATION


class SubmissionInvalid(MenuError):
    reason = REASON_VALIDATION


class RequestNotFound(MenuError):
    kind = ErrorKind.NOT_FOUND


class AccessDenied(MenuError):
    """The link was missing, forged, expired or replaced."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    reason: Optional[str] = None
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, exc: MenuError) -> "Failure":
        return cls(kind=exc.kind, message=exc.message, reason=exc.reason)


Result = Union[Ok[T], Failure]


ERROR_TITLES = {
    ErrorKind.MISSING_TOKEN: "Acesso restrito",
    ErrorKind.EXPIRED: "Link expirado",
    ErrorKind.REVOKED: "Link revogado",
    ErrorKind.NOT_FOUND: "Solicitação não encontrada",
    ErrorKind.GENERIC: "Não foi possível concluir",
}


def http_status_for(failure: Failure) -> int:
    if failure.kind == ErrorKind.MISSING_TOKEN:
        return 401
    if failure.kind in (ErrorKind.EXPIRED, ErrorKind.REVOKED):
        return 410
    if failure.kind == ErrorKind.NOT_FOUND:
        return 404
    if failure.reason == REASON_FORBIDDEN:
        return 403
    if failure.reason in (REASON_LOCKED, REASON_INVALID_TRANSITION, REASON_CONFLICT):
        return 409
    if failure.reason == REASON_VALIDATION:
        return 422
    return 400
