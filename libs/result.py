"""Result type used as the return contract of every use case

A use case never raises for an expected failure; it returns
``Return.err(Error(...))`` and lets the caller decide how to surface it.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Error:
    """
    Error payload carried by a failed Result

    Attributes:
        code: Stable machine-readable code (e.g. CHARGE_REJECTED)
        message: Human-readable message, safe to show to clients
        reason: Internal detail (provider text, exception string). Logged, never serialized.
    """

    code: str
    message: str
    reason: Optional[str] = None


class Result(Generic[T]):
    """Either a value or an Error"""

    __slots__ = ("_value", "_error")

    def __init__(self, value: Optional[T] = None, error: Optional[Error] = None):
        self._value = value
        self._error = error

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    @property
    def value(self) -> T:
        if self._error is not None:
            raise ValueError(f"Result has no value: {self._error.code}")
        return self._value

    @property
    def error(self) -> Error:
        if self._error is None:
            raise ValueError("Result has no error")
        return self._error

    def __repr__(self) -> str:
        if self.is_ok():
            return f"Result.ok({self._value!r})"
        return f"Result.err({self._error.code})"


class Return:
    """Constructors for Result"""

    @staticmethod
    def ok(value: T = None) -> Result[T]:
        return Result(value=value)

    @staticmethod
    def err(error: Error) -> Result:
        return Result(error=error)
