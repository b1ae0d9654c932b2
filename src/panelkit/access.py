"""Privilege checks for panelkit CLI commands.

Commands that touch the record store or the Docker daemon config must run
as root. Read-only commands can run as any user.
"""

import functools
import os
from typing import Callable, TypeVar

import click

F = TypeVar("F", bound=Callable)


class AccessDeniedError(Exception):
    """Raised when access is denied to a resource."""

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion


def require_root() -> None:
    """Check that current user is root. Raises AccessDeniedError if not."""
    if os.getuid() != 0:
        raise AccessDeniedError(
            message="This command requires root privileges",
            suggestion="Run as root: sudo panelkit <command>",
        )


def root_only(func: F) -> F:
    """Decorator: Command requires root access."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            require_root()
        except AccessDeniedError as e:
            # Get formatter from click context if available
            ctx = click.get_current_context(silent=True)
            if ctx and ctx.obj and "formatter" in ctx.obj:
                ctx.obj["formatter"].error(
                    code="ACCESS_DENIED",
                    message=e.message,
                    suggestion=e.suggestion,
                )
                raise SystemExit(1)
            else:
                raise click.ClickException(f"{e.message}. {e.suggestion or ''}")
        return func(*args, **kwargs)
    return wrapper  # type: ignore
