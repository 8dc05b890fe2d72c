"""Result values and the error taxonomy shared by every console service.

Services return ``Ok(value)`` or ``Err(error)`` instead of raising, so a
caller always learns which kind of failure happened:

- ``ValidationError``: the request was rejected, nothing changed
- ``AuthorizationError``: the caller may not do this
- ``ConflictError``: someone else changed the record first
- ``NotFoundError``: the id does not exist
- ``TransientFetchError``: storage hiccup, the same call may succeed later
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterator,
    Mapping,
    ParamSpec,
    TypeVar,
    Union,
    cast,
)

import structlog

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")
P = ParamSpec("P")

# Substrings of context keys whose values are masked before logging
_SECRET_MARKERS: tuple[str, ...] = ("password", "secret", "token", "api_key", "authorization")
_MASK = "***redacted***"

_ERROR_COUNTS: Counter[str] = Counter()


def _mask_context(value: Any) -> Any:
    if not isinstance(value, Mapping):
        return value
    masked: dict[str, Any] = {}
    for key, item in cast(Mapping[Any, Any], value).items():
        lowered = str(key).lower()
        masked[key] = _MASK if any(m in lowered for m in _SECRET_MARKERS) else _mask_context(item)
    return masked


def get_error_metrics() -> dict[str, int]:
    """Errors produced by the decorators so far, by class name plus ``__total__``."""
    return dict(_ERROR_COUNTS)


def reset_error_metrics() -> None:
    _ERROR_COUNTS.clear()


class Error(Exception):
    """Base error carried by ``Err``.

    ``context`` holds ids useful for debugging (report_id, node_id, ...);
    ``cause`` keeps the exception that was translated, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
            "cause": None if self.cause is None else repr(self.cause),
        }

    def log_safe_context(self) -> dict[str, Any]:
        return cast(dict[str, Any], _mask_context(self.context))


class ValidationError(Error):
    pass


class AuthorizationError(Error):
    pass


class ConflictError(Error):
    pass


class NotFoundError(Error):
    pass


class TransientFetchError(Error):
    """A read failed for reasons outside the caller's control; retrying is safe."""


@dataclass(slots=True)
class Ok(Generic[T, E]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> E:
        raise RuntimeError("unwrap_err() called on Ok")

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> "Result[U, E]":
        return Ok(fn(self.value))

    def and_then(self, fn: Callable[[T], "Result[U, E]"]) -> "Result[U, E]":
        return fn(self.value)

    def __iter__(self) -> Iterator[T]:
        yield self.value


@dataclass(slots=True)
class Err(Generic[T, E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise RuntimeError(f"unwrap() called on Err: {self.error!r}")

    def unwrap_err(self) -> E:
        return self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[T], U]) -> "Result[U, E]":
        return Err(self.error)

    def and_then(self, fn: Callable[[T], "Result[U, E]"]) -> "Result[U, E]":
        return Err(self.error)

    def __iter__(self) -> Iterator[T]:
        return iter(())


Result = Union[Ok[T, E], Err[T, E]]


def _translate(
    func: Callable[..., Any],
    exc: Exception,
    error_type: type[Error],
    exception_map: Mapping[type[Exception], type[Error]] | None,
) -> Err[Any, Error]:
    """Turn ``exc`` into an ``Err``; the first matching ``exception_map`` entry wins."""
    selected = error_type
    for exc_type, mapped in (exception_map or {}).items():
        if isinstance(exc, exc_type):
            selected = mapped
            break
    # A domain error raised deep inside keeps its own subtype and context
    error = exc if isinstance(exc, selected) else selected(str(exc), cause=exc)
    _ERROR_COUNTS[type(error).__name__] += 1
    _ERROR_COUNTS["__total__"] += 1
    LOGGER.error(
        "result.exception_translated",
        function=getattr(func, "__qualname__", "<unknown>"),
        error_type=type(error).__name__,
        error=str(error),
        context=error.log_safe_context(),
    )
    return Err(error)


def returns_result(
    error_type: type[Error] = Error,
    *,
    exception_map: Mapping[type[Exception], type[Error]] | None = None,
) -> Callable[[Callable[P, Any]], Callable[P, Result[Any, Error]]]:
    """Synchronous counterpart of ``async_returns_result``."""

    def decorator(func: Callable[P, Any]) -> Callable[P, Result[Any, Error]]:
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[Any, Error]:
            try:
                value = func(*args, **kwargs)
            except Exception as exc:
                return _translate(func, exc, error_type, exception_map)
            return value if isinstance(value, (Ok, Err)) else Ok(value)

        wrapper.__name__ = getattr(func, "__name__", "wrapper")
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator


def async_returns_result(
    error_type: type[Error] = Error,
    *,
    exception_map: Mapping[type[Exception], type[Error]] | None = None,
) -> Callable[[Callable[P, Awaitable[Any]]], Callable[P, Awaitable[Result[Any, Error]]]]:
    """Make a coroutine function return a ``Result`` instead of raising.

    A returned ``Ok``/``Err`` passes through unchanged and any other return
    value is wrapped in ``Ok``. Raised exceptions are translated through
    ``exception_map`` (falling back to ``error_type``); the original
    exception is kept as ``cause``.
    """

    def decorator(
        func: Callable[P, Awaitable[Any]],
    ) -> Callable[P, Awaitable[Result[Any, Error]]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[Any, Error]:
            try:
                value = await func(*args, **kwargs)
            except Exception as exc:
                return _translate(func, exc, error_type, exception_map)
            return value if isinstance(value, (Ok, Err)) else Ok(value)

        wrapper.__name__ = getattr(func, "__name__", "wrapper")
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator


__all__ = [
    "Ok",
    "Err",
    "Result",
    "Error",
    "ValidationError",
    "AuthorizationError",
    "ConflictError",
    "NotFoundError",
    "TransientFetchError",
    "returns_result",
    "async_returns_result",
    "get_error_metrics",
    "reset_error_metrics",
]
