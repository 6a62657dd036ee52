"""Sequential batch execution with aggregated progress and cancellation."""

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from mediabatch.process.cancellation import CancellationHandle
from mediabatch.process.runner import LAUNCH_FAILURE_EXIT_CODE, run_process_with_callback
from mediabatch.progress.parser import LineParser, ProgressSnapshot
from mediabatch.tools.resolver import ExecutableResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchItem:
    """One unit of work: a source processed into one target format."""

    source: str
    target: str
    output_dir: Path

    def __str__(self) -> str:
        return f"{self.source} -> {self.target}"


class BatchState(Enum):
    """Lifecycle of a batch run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PARTIALLY_FAILED = "partially_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BatchState.COMPLETED,
            BatchState.CANCELLED,
            BatchState.PARTIALLY_FAILED,
        )


class FailureKind(Enum):
    """Why an item did not succeed."""

    RESOLUTION = "resolution"  # executable not found
    LAUNCH = "launch"  # OS refused to start it
    TOOL = "tool"  # ran and exited non-zero


@dataclass(frozen=True)
class ItemResult:
    item: BatchItem
    index: int
    exit_code: int
    failure: FailureKind | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class BatchProgress:
    """Immutable progress record published to observers."""

    state: BatchState
    item_index: int
    item_count: int
    current_item: int = 0
    total_items: int = 1
    percent: float = 0.0
    label: str = ""
    fraction: float = 0.0
    failed_count: int = 0


@dataclass(frozen=True)
class BatchResult:
    state: BatchState
    results: tuple[ItemResult, ...]

    @property
    def failed(self) -> list[ItemResult]:
        return [r for r in self.results if not r.success]

    @property
    def succeeded(self) -> list[ItemResult]:
        return [r for r in self.results if r.success]

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class CommandBuilder(Protocol):
    """Turns a batch item into a tool invocation."""

    tool: str

    def build(self, executable: str, item: BatchItem) -> list[str]: ...

    def parser_for(self, item: BatchItem) -> LineParser: ...


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def item_fraction(snapshot: ProgressSnapshot) -> float:
    """Completion of the current item in [0, 1].

    When the tool reports its own multi-entry total (a playlist), the
    position within that total is folded in.
    """
    percent = clamp(snapshot.percent / 100)
    if snapshot.total_items > 1:
        done = clamp(snapshot.current_item - 1, 0, snapshot.total_items)
        return clamp((done + percent) / snapshot.total_items)
    return percent


def expand_matrix(
    sources: Iterable[str | Path],
    targets: Sequence[str],
    output_dir: Path | None = None,
) -> list[BatchItem]:
    """Build source-major items: each source across every target, in order.

    Without ``output_dir`` each output lands beside its source.
    """
    items = []
    for source in sources:
        source_path = Path(source)
        directory = output_dir if output_dir is not None else source_path.parent
        for target in targets:
            items.append(BatchItem(str(source), target, directory))
    return items


class BatchOrchestrator:
    """Drive a list of items through an external tool, one at a time.

    A failing item is recorded and the batch moves on. ``cancel()`` stops
    scheduling new items and terminates the one in flight. Each instance
    runs a single batch; terminal states are final.
    """

    def __init__(
        self,
        builder: CommandBuilder,
        resolver: ExecutableResolver,
        progress_callback: Callable[[BatchProgress], None] | None = None,
    ):
        self.builder = builder
        self.resolver = resolver
        self.progress_callback = progress_callback
        self.handle = CancellationHandle()
        self._cancel_requested = threading.Event()
        self._state = BatchState.IDLE
        self._snapshot = ProgressSnapshot()
        self._progress = BatchProgress(BatchState.IDLE, 0, 0)
        self._results: list[ItemResult] = []
        self._completed = 0

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def progress(self) -> BatchProgress:
        """Latest published progress; safe to read from any thread."""
        return self._progress

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def cancel(self) -> None:
        """Stop the batch. Safe to call repeatedly and at any time."""
        if self._state.is_terminal:
            return
        if not self._cancel_requested.is_set():
            logger.info("Cancellation requested")
        self._cancel_requested.set()
        self.handle.terminate()

    async def run(self, items: Sequence[BatchItem]) -> BatchResult | None:
        """Process ``items`` in order. Returns None for an empty list."""
        if not items:
            logger.warning("Nothing to process: empty batch")
            return None
        if self._state is not BatchState.IDLE:
            msg = f"Batch already {self._state.value}; create a new orchestrator"
            raise RuntimeError(msg)

        self._state = BatchState.RUNNING
        total = len(items)
        logger.info(f"Starting batch of {total} item(s) with {self.builder.tool}")
        self._publish(0, total, 0.0)

        # Resolution may shell out to brew or which; keep it off the loop
        executable = await asyncio.get_running_loop().run_in_executor(
            None,
            self.resolver.resolve,
            self.builder.tool,
        )
        if executable is None:
            logger.error(f"{self.builder.tool} not found; every item will fail")

        cancelled = False
        for index, item in enumerate(items, 1):
            if self._cancel_requested.is_set():
                cancelled = True
                break

            self._snapshot.reset()
            self._publish(index, total, self._completed / total)

            result = await self._run_item(executable, item, index, total)
            if self._cancel_requested.is_set() and not result.success:
                # Killed on request, not a failure
                logger.info(f"Item {index}/{total} stopped by cancellation")
                cancelled = True
                break

            self._results.append(result)
            self._completed += 1
            if result.success:
                logger.info(f"Item {index}/{total} finished: {item}")
            else:
                logger.warning(
                    f"Item {index}/{total} failed ({result.failure.value}): {result.message}",
                )
            self._publish(index, total, self._completed / total)

        if cancelled:
            self._state = BatchState.CANCELLED
        elif any(not r.success for r in self._results):
            self._state = BatchState.PARTIALLY_FAILED
        else:
            self._state = BatchState.COMPLETED

        final_fraction = self._progress.fraction
        if self._state is not BatchState.CANCELLED:
            final_fraction = 1.0
        self._publish(self._progress.item_index, total, final_fraction)

        result = BatchResult(self._state, tuple(self._results))
        logger.info(
            f"Batch {self._state.value}: {len(result.succeeded)} succeeded, "
            f"{result.failed_count} failed",
        )
        return result

    async def _run_item(
        self,
        executable: str | None,
        item: BatchItem,
        index: int,
        total: int,
    ) -> ItemResult:
        if executable is None:
            return ItemResult(
                item,
                index,
                LAUNCH_FAILURE_EXIT_CODE,
                FailureKind.RESOLUTION,
                f"{self.builder.tool} not found",
            )

        parser = self.builder.parser_for(item)
        args = self.builder.build(executable, item)
        logger.debug(f"Running: {' '.join(args)}")

        def on_output(line: str) -> None:
            logger.debug(f"{self.builder.tool}: {line}")
            try:
                changed = parser(line, self._snapshot)
            except Exception as e:
                logger.debug(f"Could not parse line {line!r}: {e}")
                return
            if changed:
                fraction = (self._completed + item_fraction(self._snapshot)) / total
                self._publish(index, total, fraction)

        run = await run_process_with_callback(args, on_output, self.handle)

        if not run.launched:
            return ItemResult(item, index, run.exit_code, FailureKind.LAUNCH, run.output)
        if run.exit_code != 0:
            return ItemResult(
                item,
                index,
                run.exit_code,
                FailureKind.TOOL,
                _last_line(run.output) or f"exit code {run.exit_code}",
            )
        return ItemResult(item, index, run.exit_code)

    def _publish(self, index: int, total: int, fraction: float) -> None:
        # Never let the aggregate go backwards within a run
        fraction = max(self._progress.fraction, clamp(fraction))
        snapshot = self._snapshot
        self._progress = BatchProgress(
            state=self._state,
            item_index=index,
            item_count=total,
            current_item=snapshot.current_item,
            total_items=snapshot.total_items,
            percent=snapshot.percent,
            label=snapshot.label,
            fraction=fraction,
            failed_count=sum(1 for r in self._results if not r.success),
        )
        if self.progress_callback:
            try:
                self.progress_callback(self._progress)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")


def _last_line(output: str) -> str:
    lines = [line for line in output.splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""
