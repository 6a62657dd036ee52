"""Error handling for the outer surfaces of mediabatch.

Per-item failures inside a batch are recorded on the batch result, never
raised; the exceptions here are for configuration, dependency and user input
problems that stop a command before any work starts.
"""

import logging
import sys
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from mediabatch.tools.resolver import ExecutableResolver

logger = logging.getLogger(__name__)
console = Console()


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    FILESYSTEM = "filesystem"
    EXTERNAL_TOOL = "external_tool"
    SYSTEM = "system"
    USER_INPUT = "user_input"


class MediaBatchError(Exception):
    """Base exception for mediabatch with user-facing context."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_colors = {
            ErrorCategory.CONFIGURATION: "yellow",
            ErrorCategory.DEPENDENCY: "red",
            ErrorCategory.FILESYSTEM: "red",
            ErrorCategory.EXTERNAL_TOOL: "red",
            ErrorCategory.SYSTEM: "red",
            ErrorCategory.USER_INPUT: "yellow",
        }
        color = category_colors.get(self.category, "red")
        title = self.category.value.replace("_", " ").title()

        console.print(f"\n[{color} bold]{title} Error[/{color} bold]")
        console.print(f"[{color}]{escape(self.message)}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {escape(self.details)}")

        if self.solution:
            console.print(f"\n[green]Solution:[/green] {escape(self.solution)}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(MediaBatchError):
    """Configuration-related errors."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            **kwargs,
        )


class DependencyError(MediaBatchError):
    """A required external tool could not be located."""

    def __init__(
        self,
        dependency: str,
        *,
        install_command: str | None = None,
        **kwargs,
    ):
        message = f"Required dependency '{dependency}' is not available"
        solution = kwargs.pop("solution", None)
        if not solution and install_command:
            solution = f"Install with: {install_command}"
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )
        self.dependency = dependency


class ExternalToolError(MediaBatchError):
    """External tool execution errors."""

    def __init__(
        self,
        tool: str,
        exit_code: int | None = None,
        output: str | None = None,
        **kwargs,
    ):
        message = f"{tool} failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"

        details = kwargs.pop("details", output)
        solution = kwargs.pop(
            "solution",
            f"Check {tool} is properly installed and up to date",
        )

        super().__init__(
            message,
            ErrorCategory.EXTERNAL_TOOL,
            details=details,
            solution=solution,
            **kwargs,
        )


class UserInputError(MediaBatchError):
    """Invalid links, files or options supplied by the user."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.USER_INPUT, **kwargs)


def handle_error(
    error: Exception,
    *,
    category: ErrorCategory | None = None,
    **kwargs,
) -> None:
    """Convert generic exceptions to MediaBatchError and display to user."""
    if isinstance(error, MediaBatchError):
        error.display_to_user()
        return

    if category is None:
        if isinstance(error, FileNotFoundError | PermissionError):
            category = ErrorCategory.FILESYSTEM
        else:
            category = ErrorCategory.SYSTEM

    MediaBatchError(
        message=str(error) or "An unexpected error occurred",
        category=category,
        original_error=error,
        **kwargs,
    ).display_to_user()


INSTALL_HINTS = {
    "yt-dlp": "brew install yt-dlp",
    "ffmpeg": "brew install ffmpeg",
    "brew": '/bin/bash -c "$(curl -fsSL https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh)"',
}


def check_dependencies(
    resolver: "ExecutableResolver",
    names: Iterable[str],
) -> list[DependencyError]:
    """Return a DependencyError for every tool the resolver cannot find."""
    errors = []
    for name in names:
        if resolver.resolve(name) is None:
            errors.append(
                DependencyError(name, install_command=INSTALL_HINTS.get(name)),
            )
    return errors


def graceful_exit(exit_code: int = 1) -> None:
    """Exit with a short closing message."""
    if exit_code == 0:
        console.print("\n[green]Done[/green]")
    elif exit_code == 130:
        console.print("\n[yellow]Stopped at your request[/yellow]")
    else:
        console.print("\n[red]mediabatch finished with errors[/red]")
        console.print("[dim]Check the logs above for details on what went wrong[/dim]")

    sys.exit(exit_code)
