"""Typed outcomes for credential operations and the exceptions reserved for hard failures."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCategory(StrEnum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


class AuthErrorCode(StrEnum):
    VALIDATION_ERROR = "ValidationError"
    EMAIL_ALREADY_EXISTS = "EmailAlreadyExists"
    INVALID_CREDENTIALS = "InvalidCredentials"
    INVALID_REFRESH_TOKEN = "InvalidRefreshToken"
    TOKEN_NOT_FOUND = "TokenNotFound"
    TOKEN_EXPIRED = "TokenExpired"
    CURRENT_PASSWORD_MISMATCH = "CurrentPasswordMismatch"
    SAME_PASSWORD = "SamePassword"
    USER_NOT_FOUND = "UserNotFound"


_CATEGORIES: dict[AuthErrorCode, ErrorCategory] = {
    AuthErrorCode.VALIDATION_ERROR: ErrorCategory.VALIDATION,
    AuthErrorCode.EMAIL_ALREADY_EXISTS: ErrorCategory.CONFLICT,
    AuthErrorCode.SAME_PASSWORD: ErrorCategory.CONFLICT,
    AuthErrorCode.INVALID_CREDENTIALS: ErrorCategory.AUTHENTICATION,
    AuthErrorCode.INVALID_REFRESH_TOKEN: ErrorCategory.AUTHENTICATION,
    AuthErrorCode.CURRENT_PASSWORD_MISMATCH: ErrorCategory.AUTHENTICATION,
    AuthErrorCode.TOKEN_NOT_FOUND: ErrorCategory.NOT_FOUND,
    AuthErrorCode.USER_NOT_FOUND: ErrorCategory.NOT_FOUND,
    AuthErrorCode.TOKEN_EXPIRED: ErrorCategory.EXPIRED,
}


@dataclass(frozen=True)
class ServiceError:
    """An expected failure: code for clients, message for humans."""

    code: AuthErrorCode
    message: str
    details: dict[str, Any] | None = None

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self.code]


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ServiceError, never both."""

    value: T | None = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        code: AuthErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> "Result[T]":
        return cls(error=ServiceError(code=code, message=message, details=details))


class ConfigurationError(Exception):
    """Raised when the deployment is misconfigured (e.g. the default role is missing). Fatal."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InfrastructureError(Exception):
    """Raised when a store or the email sender fails; the original exception is kept as cause."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class DuplicateEmailError(Exception):
    """Raised by an AccountStore when an insert loses a race on the unique email."""
