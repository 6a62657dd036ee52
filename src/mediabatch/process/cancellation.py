"""Cancellation handle bound to the subprocess currently in flight."""

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)


class CancellationHandle:
    """Lets one task ask the process another task is awaiting to terminate.

    The handle holds at most one process reference. ``terminate()`` may be
    called any number of times from any thread, before a process is bound,
    while it runs, or after it has exited; only a bound, still-running
    process is ever signalled.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._process: asyncio.subprocess.Process | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def bound(self) -> bool:
        with self._lock:
            return self._process is not None

    def bind(self, process: asyncio.subprocess.Process) -> None:
        """Attach a freshly launched process. Must be called on its event loop."""
        with self._lock:
            self._process = process
            self._loop = asyncio.get_running_loop()

    def release(self, process: asyncio.subprocess.Process) -> None:
        """Drop the reference once ``process`` has exited."""
        with self._lock:
            if self._process is process:
                self._process = None
                self._loop = None

    def terminate(self) -> bool:
        """Request graceful termination of the bound process.

        Returns True when a termination request was issued. Does not wait
        for the process to exit.
        """
        with self._lock:
            process = self._process
            loop = self._loop
            if process is None or process.returncode is not None:
                return False

        if loop is not None and not loop.is_closed() and not _running_on(loop):
            # Child reaping belongs to the loop; signal from its own thread
            loop.call_soon_threadsafe(self._signal, process)
            return True
        return self._signal(process)

    def _signal(self, process: asyncio.subprocess.Process) -> bool:
        with self._lock:
            if self._process is not process or process.returncode is not None:
                return False
            try:
                process.terminate()
            except ProcessLookupError:
                return False
        logger.debug("Sent terminate to pid %s", process.pid)
        return True


def _running_on(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
