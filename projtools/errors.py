"""Result types and errors for projtools.

Library functions return ``Result[T, ToolsError]`` instead of raising for
expected failures (missing directories, bad input, failing external
commands). The CLI is the only place that turns an error into an exit code.

Example:
    result = create_checkpoint(ctx, "fix login")
    if result.is_err():
        console.print(format_error(result.error))
        sys.exit(result.error.exit_code)
    info = result.unwrap()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class ToolsError:
    """A structured, user-presentable error.

    Attributes:
        code: Stable machine-readable code (e.g. "INVALID_VERSION")
        message: Human-readable description
        context: Extra details; "returncode" is used as the process exit code
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        """Exit code for the CLI: the failing command's return code, else 1."""
        returncode = self.context.get("returncode")
        if isinstance(returncode, int) and returncode > 0:
            return returncode
        return 1


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> Any:
        raise ValueError("Called unwrap_err() on an Ok result")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> None:
        return None

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        raise ValueError(f"Called unwrap() on an Err result: {self.error}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[E]]


def ok(value: T) -> Ok[T]:
    """Wrap a value in an Ok result."""
    return Ok(value)


def err(error: E) -> Err[E]:
    """Wrap an error in an Err result."""
    return Err(error)


def format_error(error: ToolsError | None) -> str:
    """Format an error for display."""
    if error is None:
        return "Unknown error"
    return f"{error.message} [{error.code}]"
