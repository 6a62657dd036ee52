"""Asynchronous subprocess execution with continuous output draining."""

import asyncio
import codecs
import logging
import re
import subprocess
from collections.abc import Callable
from dataclasses import dataclass

from mediabatch.process.cancellation import CancellationHandle

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
LAUNCH_FAILURE_EXIT_CODE = 1

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class RunResult:
    """Exit status and combined stdout/stderr of one finished process."""

    exit_code: int
    output: str
    launched: bool = True

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class LineBuffer:
    """Incrementally decode process output and split it into lines.

    Carriage returns count as line breaks because tools such as ffmpeg
    redraw their status line in place.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        """Everything decoded so far."""
        return "".join(self._parts)

    def feed(self, data: bytes) -> list[str]:
        return self._split(self._decoder.decode(data))

    def flush(self) -> list[str]:
        lines = self._split(self._decoder.decode(b"", final=True))
        if self._pending.strip():
            lines.append(self._pending.rstrip())
        self._pending = ""
        return lines

    def _split(self, text: str) -> list[str]:
        if not text:
            return []
        self._parts.append(text)
        pieces = _LINE_BREAK.split(self._pending + text)
        self._pending = pieces.pop()
        return [piece.rstrip() for piece in pieces if piece.strip()]


async def _launch(args: list[str]) -> asyncio.subprocess.Process:
    if not args:
        msg = "No command provided"
        raise ValueError(msg)
    return await asyncio.create_subprocess_exec(
        *args,
        stdin=subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )


def _launch_failure(args: list[str], error: Exception) -> RunResult:
    command = args[0] if args else "<empty>"
    logger.error(f"Failed to start {command}: {error}")
    return RunResult(
        exit_code=LAUNCH_FAILURE_EXIT_CODE,
        output=f"Failed to start: {error}",
        launched=False,
    )


async def _drain(
    process: asyncio.subprocess.Process,
    buffer: LineBuffer,
    sink: Callable[[str], None] | None = None,
) -> None:
    """Read output until EOF so the child never blocks on a full pipe."""
    if process.stdout is None:
        return
    while True:
        data = await process.stdout.read(READ_CHUNK_SIZE)
        if not data:
            break
        lines = buffer.feed(data)
        if sink:
            for line in lines:
                sink(line)
    lines = buffer.flush()
    if sink:
        for line in lines:
            sink(line)


async def _wait_for_exit(
    process: asyncio.subprocess.Process,
    tasks: list[asyncio.Task],
) -> int:
    """Wait for the process and its helper tasks, cleaning up on cancellation."""
    try:
        exit_code = await process.wait()
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        for task in tasks:
            task.cancel()
        raise
    return exit_code


async def run_process(args: list[str]) -> RunResult:
    """Run ``args`` to completion and return its exit code and output.

    ``args[0]`` is the executable path. A launch failure is reported as a
    non-zero result, never raised.
    """
    try:
        process = await _launch(args)
    except (OSError, ValueError) as e:
        return _launch_failure(args, e)

    logger.debug(f"Started {args[0]} (pid {process.pid})")
    buffer = LineBuffer()
    reader = asyncio.create_task(_drain(process, buffer))
    exit_code = await _wait_for_exit(process, [reader])

    logger.debug(f"{args[0]} exited with code {exit_code}")
    return RunResult(exit_code=exit_code, output=buffer.text)


async def run_process_with_callback(
    args: list[str],
    on_output: Callable[[str], None],
    handle: CancellationHandle | None = None,
) -> RunResult:
    """Run ``args`` and feed each output line to ``on_output`` as it arrives.

    Lines travel through a queue to a separate dispatcher task, so the
    callback runs decoupled from the reader but always in production order.
    ``handle`` is bound right after launch, before any output is read, and
    released once the process has exited.
    """
    try:
        process = await _launch(args)
    except (OSError, ValueError) as e:
        return _launch_failure(args, e)

    if handle is not None:
        handle.bind(process)

    logger.debug(f"Started {args[0]} (pid {process.pid})")
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    buffer = LineBuffer()

    async def read_output() -> None:
        try:
            await _drain(process, buffer, queue.put_nowait)
        finally:
            queue.put_nowait(None)

    async def dispatch_output() -> None:
        while True:
            line = await queue.get()
            if line is None:
                break
            try:
                on_output(line)
            except Exception as e:
                # Keep draining; a broken observer must not stall the child
                logger.warning(f"Output callback failed: {e}")

    try:
        reader = asyncio.create_task(read_output())
        dispatcher = asyncio.create_task(dispatch_output())
        exit_code = await _wait_for_exit(process, [reader, dispatcher])
    finally:
        if handle is not None:
            handle.release(process)

    logger.debug(f"{args[0]} exited with code {exit_code}")
    return RunResult(exit_code=exit_code, output=buffer.text)


def run_process_sync(args: list[str], timeout: float) -> str | None:
    """Run a short lookup command and return its stripped stdout.

    Blocking. Any failure to run, a timeout or a non-zero exit gives None.
    """
    try:
        result = subprocess.run(
            args,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.debug(f"Timed out running {args[0]}")
        return None
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not run {args[0]}: {e}")
        return None

    if result.returncode != 0:
        return None
    return result.stdout.strip() or None
