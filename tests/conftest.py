"""Shared test configuration and fixtures."""

import logging
import stat
import sys
from pathlib import Path

import pytest

from mediabatch.cli import cleanup_logging
from mediabatch.config import MediaBatchConfig


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


@pytest.fixture
def config(tmp_path):
    """Configuration isolated from the host's tools and directories."""
    return MediaBatchConfig(
        download_dir=tmp_path / "downloads",
        log_dir=tmp_path / "logs",
        known_paths={},
        which_command=str(tmp_path / "no-which"),
    )


@pytest.fixture
def python_command():
    """Build an argv that runs a Python snippet in a child interpreter."""

    def build(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return build


def make_executable(path: Path, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    """Write a small script and mark it executable."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_tool(tmp_path):
    """Factory for executables inside the test's temporary directory."""

    def create(relative: str, body: str = "#!/bin/sh\nexit 0\n") -> Path:
        return make_executable(tmp_path / relative, body)

    return create
