"""Domain error taxonomy and the success/failure result envelope."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class DomainError:
    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        data = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data


def create_error(
    code: ErrorCode,
    message: str,
    retryable: bool | None = None,
    details: dict[str, Any] | None = None,
) -> DomainError:
    """Build a DomainError. Only INTERNAL_ERROR is retryable unless overridden."""
    if retryable is None:
        retryable = code is ErrorCode.INTERNAL_ERROR
    return DomainError(code=code, message=message, retryable=retryable, details=details)


@dataclass
class Result:
    value: Any = None
    error: DomainError | None = None
    warnings: list[DomainError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None, warnings: list[DomainError] | None = None) -> "Result":
        return cls(value=value, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: DomainError) -> "Result":
        return cls(error=error)

    def unwrap(self) -> Any:
        """Return the value, raising OperationError on a failed result."""
        if self.error is not None:
            raise OperationError(self.error)
        return self.value


class OperationError(Exception):
    """Raised inside an operation to abort it with a DomainError.

    Never escapes an operation: the ``@operation`` boundary converts it into
    a failed Result.
    """

    def __init__(self, error: DomainError):
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> ErrorCode:
        return self.error.code


class StorageError(Exception):
    """Raised by a storage backend when it cannot serve a request."""


class EntityNotFoundError(StorageError):
    """Raised by a storage backend when deleting an entity that does not exist."""


def forbidden(message: str) -> OperationError:
    return OperationError(create_error(ErrorCode.FORBIDDEN, message))


def not_found(message: str) -> OperationError:
    return OperationError(create_error(ErrorCode.NOT_FOUND, message))


def conflict(message: str, **details: Any) -> OperationError:
    return OperationError(create_error(ErrorCode.CONFLICT, message, details=details or None))
