"""Error types and the tagged result returned by public operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class CaseLensError(Exception):
    """Base class for errors raised inside the content pipeline."""


class ValidationError(CaseLensError):
    """Caller supplied a malformed value (bad regex, out-of-range score, empty text)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(CaseLensError):
    """A referenced pattern, index entry or saved search does not exist."""

    def __init__(self, message: str, entity_type: str | None = None, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.entity_type = entity_type
        self.entity_id = entity_id


class DatabaseError(CaseLensError):
    """A store operation failed; the message carries the underlying cause."""

    @classmethod
    def wrap(cls, operation: str, exc: BaseException) -> "DatabaseError":
        return cls(f"{operation}: {exc}")


@dataclass(slots=True)
class Result(Generic[T]):
    success: bool
    data: T | None = None
    error: CaseLensError | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> "Result[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: BaseException) -> "Result[T]":
        if not isinstance(error, CaseLensError):
            error = DatabaseError(str(error) or type(error).__name__)
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Return the payload or raise the carried error."""
        if not self.success:
            assert self.error is not None
            raise self.error
        return self.data  # type: ignore[return-value]
