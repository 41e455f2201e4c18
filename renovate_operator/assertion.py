"""Fatal assertion helpers used where a broken invariant must stop the program."""

from __future__ import annotations

from typing import Any

_HEADER = "== ASSERTION FAILURE =="


class AssertionFailure(Exception):
    """Raised when an invariant checked by :func:`assert_that` does not hold."""

    def __init__(self, messages: list[Any] | tuple[Any, ...] = ()) -> None:
        self.messages = [try_stringify(message) for message in messages]
        lines = [_HEADER]
        if self.messages:
            lines.append("Messages:")
            lines.extend(f"  -> {message}" for message in self.messages)
        super().__init__("\n".join(lines))


def try_stringify(data: Any) -> Any:
    """Return exceptions unchanged, objects with their own ``__str__`` as text, anything else as is."""
    if isinstance(data, BaseException):
        return data
    if data is None or isinstance(data, (bool, int, float, complex, bytes, str)):
        return data
    if type(data).__str__ is not object.__str__:
        return str(data)
    return data


def assert_that(condition: bool, *args: Any) -> None:
    """Raise :class:`AssertionFailure` carrying ``args`` when ``condition`` is false."""
    if not condition:
        raise AssertionFailure(args)


def no_error(error: BaseException | None, message: str) -> None:
    """Raise :class:`AssertionFailure` with ``message`` when ``error`` is set."""
    if error is not None:
        raise AssertionFailure((message, error)) from error