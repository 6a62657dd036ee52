"""Locate external executables such as yt-dlp and ffmpeg."""

import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from mediabatch.process.runner import run_process_sync

if TYPE_CHECKING:
    from mediabatch.config import MediaBatchConfig

logger = logging.getLogger(__name__)


class DependencyStatus:
    """Resolution outcome for one tool."""

    def __init__(self, name: str, path: str | None):
        self.name = name
        self.path = path

    @property
    def installed(self) -> bool:
        return self.path is not None

    def __str__(self) -> str:
        if self.path:
            return f"{self.name}: {self.path}"
        return f"{self.name}: not found"


def is_executable(path: str | Path) -> bool:
    """True for an existing regular file with the execute bit set."""
    return os.path.isfile(path) and os.access(path, os.X_OK)


class ExecutableResolver:
    """Find an executable by logical name.

    Strategies, in priority order:

    1. ``<bundled_dir>/<name>`` when a bundled binaries directory is configured
    2. the well-known install paths listed for ``name``
    3. ``<prefix>/bin/<name>`` where the prefix comes from the package manager
    4. the system ``which`` utility

    A missing tool is a normal outcome: ``resolve`` returns None and never
    raises. Nothing is cached, every call walks the tiers again.
    """

    def __init__(
        self,
        *,
        bundled_dir: Path | None = None,
        known_paths: Mapping[str, list[str]] | None = None,
        package_manager: str = "brew",
        which_command: str = "/usr/bin/which",
        timeout: int = 10,
    ):
        self.bundled_dir = bundled_dir
        self.known_paths = dict(known_paths or {})
        self.package_manager = package_manager
        self.which_command = which_command
        self.timeout = timeout

    def resolve(self, name: str) -> str | None:
        """Return the absolute path of ``name`` or None when not found."""
        for strategy in (
            self._from_bundle,
            self._from_known_paths,
            self._from_package_manager,
            self._from_which,
        ):
            path = strategy(name)
            if path:
                logger.debug(f"Resolved {name} -> {path} ({strategy.__name__})")
                return path

        logger.debug(f"Could not resolve executable '{name}'")
        return None

    def check_all(self, names: Iterable[str]) -> list[DependencyStatus]:
        """Resolve every name, for dependency reporting."""
        return [DependencyStatus(name, self.resolve(name)) for name in names]

    def _from_bundle(self, name: str) -> str | None:
        if self.bundled_dir is None or not self.bundled_dir.is_dir():
            return None
        candidate = self.bundled_dir / name
        if is_executable(candidate):
            return str(candidate)
        return None

    def _from_known_paths(self, name: str) -> str | None:
        for path in self.known_paths.get(name, []):
            if is_executable(path):
                return path
        return None

    def _package_prefix(self) -> str | None:
        """Ask the package manager for its installation prefix."""
        # The package manager itself is only looked up in the static tiers
        manager = self._from_bundle(self.package_manager) or self._from_known_paths(
            self.package_manager,
        )
        if manager is None:
            return None
        return run_process_sync([manager, "--prefix"], self.timeout)

    def _from_package_manager(self, name: str) -> str | None:
        if name == self.package_manager:
            return None
        prefix = self._package_prefix()
        if not prefix:
            return None
        candidate = os.path.join(prefix, "bin", name)
        if is_executable(candidate):
            return candidate
        return None

    def _from_which(self, name: str) -> str | None:
        output = run_process_sync([self.which_command, name], self.timeout)
        if not output:
            return None
        path = output.splitlines()[0].strip()
        if path and is_executable(path):
            return path
        return None


def resolver_from_config(config: "MediaBatchConfig") -> ExecutableResolver:
    """Build a resolver from the static discovery settings."""
    return ExecutableResolver(
        bundled_dir=config.bundled_bin_dir,
        known_paths=config.known_paths,
        package_manager=config.package_manager,
        which_command=config.which_command,
        timeout=config.resolver_timeout,
    )
