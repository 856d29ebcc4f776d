"""Result values for secondary operations that must not fail the caller."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Either a value or the exception that prevented producing it.

    The caller decides whether a failure is logged and ignored or raised.
    """
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Outcome[T]":
        return cls(error=error)


class OperationFailed(Exception):
    """A secondary operation ran but reported failure instead of raising."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []
