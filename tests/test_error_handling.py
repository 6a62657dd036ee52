"""Tests for the error handling system."""

import logging
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from mediabatch.error_handling import (
    ConfigurationError,
    DependencyError,
    ErrorCategory,
    ExternalToolError,
    MediaBatchError,
    UserInputError,
    check_dependencies,
    graceful_exit,
    handle_error,
)


class TestMediaBatchError:
    """Test the base MediaBatchError class."""

    def test_basic_error_creation(self):
        """Test creating a basic MediaBatchError."""
        error = MediaBatchError(
            "Test error message",
            ErrorCategory.CONFIGURATION,
            solution="Fix your config",
        )

        assert error.message == "Test error message"
        assert error.category == ErrorCategory.CONFIGURATION
        assert error.solution == "Fix your config"
        assert error.recoverable is True
        assert error.log_level == logging.ERROR

    def test_error_display(self, capsys):
        """Test error display to user."""
        error = MediaBatchError(
            "Configuration is invalid",
            ErrorCategory.CONFIGURATION,
            solution="Check your config file",
            details="Unknown format 'avi'",
        )

        error.display_to_user()
        captured = capsys.readouterr()

        assert "Configuration Error" in captured.out
        assert "Configuration is invalid" in captured.out
        assert "Check your config file" in captured.out
        assert "Unknown format" in captured.out

    def test_non_recoverable_error(self, capsys):
        """Test non-recoverable error display."""
        error = MediaBatchError("Fatal system error", ErrorCategory.SYSTEM, recoverable=False)

        error.display_to_user()
        captured = capsys.readouterr()

        assert "requires intervention" in captured.out

    @patch("mediabatch.error_handling.logger")
    def test_error_logging(self, mock_logger):
        """Test error logging with original exception."""
        original = ValueError("Original error")
        error = MediaBatchError(
            "Wrapped error",
            ErrorCategory.SYSTEM,
            original_error=original,
            log_level=logging.WARNING,
        )

        error.display_to_user()

        mock_logger.log.assert_called_once_with(
            logging.WARNING,
            "%s: %s",
            "system",
            "Wrapped error",
            exc_info=original,
        )


class TestSpecificErrors:
    """Test specific error types."""

    def test_configuration_error_points_at_file(self):
        error = ConfigurationError("Invalid configuration", config_path=Path("/etc/mediabatch.toml"))

        assert error.category == ErrorCategory.CONFIGURATION
        assert error.solution == "Check your configuration file at /etc/mediabatch.toml"

    def test_configuration_error_explicit_solution(self):
        error = ConfigurationError(
            "Invalid configuration",
            config_path=Path("/etc/mediabatch.toml"),
            solution="Run mediabatch config init",
        )

        assert error.solution == "Run mediabatch config init"

    def test_dependency_error(self):
        error = DependencyError("yt-dlp", install_command="brew install yt-dlp")

        assert error.category == ErrorCategory.DEPENDENCY
        assert error.dependency == "yt-dlp"
        assert "yt-dlp" in str(error)
        assert error.solution == "Install with: brew install yt-dlp"
        assert error.recoverable is False

    def test_external_tool_error(self):
        error = ExternalToolError("ffmpeg", exit_code=1, output="Unknown encoder 'libfoo'")

        assert error.category == ErrorCategory.EXTERNAL_TOOL
        assert str(error) == "ffmpeg failed with exit code 1"
        assert error.details == "Unknown encoder 'libfoo'"

    def test_user_input_error(self):
        error = UserInputError("No links to download")

        assert error.category == ErrorCategory.USER_INPUT
        assert error.recoverable is True


class TestDependencyChecking:
    """Test dependency checking against a resolver."""

    def test_all_present(self):
        resolver = Mock()
        resolver.resolve.return_value = "/usr/bin/tool"

        assert check_dependencies(resolver, ["yt-dlp", "ffmpeg"]) == []

    def test_missing(self):
        resolver = Mock()
        resolver.resolve.side_effect = lambda name: None if name == "ffmpeg" else f"/bin/{name}"

        errors = check_dependencies(resolver, ["yt-dlp", "ffmpeg"])

        assert [e.dependency for e in errors] == ["ffmpeg"]
        assert errors[0].solution == "Install with: brew install ffmpeg"

    def test_missing_without_hint(self):
        resolver = Mock()
        resolver.resolve.return_value = None

        errors = check_dependencies(resolver, ["custom-tool"])

        assert errors[0].solution is None


class TestErrorHandler:
    """Test error handler functionality."""

    def test_handle_error_display_only(self, capsys):
        error = MediaBatchError("Test error", ErrorCategory.CONFIGURATION)

        handle_error(error)
        captured = capsys.readouterr()

        assert "Configuration Error" in captured.out
        assert "Test error" in captured.out

    def test_generic_filesystem_error(self, capsys):
        handle_error(PermissionError("Permission denied: '/Volumes/out'"))
        captured = capsys.readouterr()

        assert "Filesystem Error" in captured.out

    def test_generic_error(self, capsys):
        handle_error(RuntimeError())
        captured = capsys.readouterr()

        assert "System Error" in captured.out
        assert "An unexpected error occurred" in captured.out

    @patch("mediabatch.error_handling.logger")
    def test_handle_error_logging(self, mock_logger):
        handle_error(MediaBatchError("Test error", ErrorCategory.CONFIGURATION))

        mock_logger.log.assert_called_once()


class TestGracefulExit:
    def test_success(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            graceful_exit(0)

        assert exc_info.value.code == 0
        assert "Done" in capsys.readouterr().out

    def test_failure(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            graceful_exit(1)

        assert exc_info.value.code == 1
        assert "finished with errors" in capsys.readouterr().out

    def test_cancelled(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            graceful_exit(130)

        assert exc_info.value.code == 130
        assert "Stopped" in capsys.readouterr().out
