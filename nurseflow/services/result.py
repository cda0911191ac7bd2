"""
Explicit result type for expected failures.

Used where failure is part of normal business flow (form validation,
notification delivery, AI lookups) rather than a programming error.
"""

from typing import Generic, TypeVar

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Either a value or an error, never both.

    ``Result.ok(None)`` is allowed so that side-effecting operations (such as
    sending a notification) can report plain success.
    """

    __slots__ = ("_value", "_error", "_is_ok")

    def __init__(self, value: ValueT | None, error: ErrorT | None, is_ok: bool) -> None:
        if is_ok and error is not None:
            raise ValueError("Result cannot have both value and error")
        if not is_ok and error is None:
            raise ValueError("Error result must carry an error")
        self._value = value
        self._error = error
        self._is_ok = is_ok

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value, None, True)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(None, error, False)

    def is_ok(self) -> bool:
        return self._is_ok

    def is_err(self) -> bool:
        return not self._is_ok

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._is_ok else default  # type: ignore[return-value]

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error

    def __repr__(self) -> str:
        if self._is_ok:
            return f"Result.ok({self._value!r})"
        return f"Result.err({self._error!r})"
