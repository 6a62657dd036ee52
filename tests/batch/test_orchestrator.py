"""Tests for the batch orchestrator."""

import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from mediabatch.batch.orchestrator import (
    BatchItem,
    BatchOrchestrator,
    BatchState,
    FailureKind,
    expand_matrix,
    item_fraction,
)
from mediabatch.process.runner import RunResult
from mediabatch.progress.parser import ProgressSnapshot, parse_line


class FakeBuilder:
    """Command builder that passes the item through as arguments."""

    tool = "fake-tool"

    def build(self, executable, item):
        return [executable, item.source, item.target]

    def parser_for(self, item):
        return parse_line


class ScriptedRunner:
    """Stand-in for run_process_with_callback that replays scripted output.

    Each script entry is either ``(lines, exit_code)``, a ready RunResult, or
    a callable taking ``on_output`` and returning a RunResult.
    """

    def __init__(self, scripts):
        self.scripts = list(scripts)
        self.calls = []

    async def __call__(self, args, on_output, handle=None):
        self.calls.append(args)
        entry = self.scripts.pop(0) if self.scripts else ([], 0)
        if isinstance(entry, RunResult):
            return entry
        if callable(entry):
            return entry(on_output)
        lines, exit_code = entry
        for line in lines:
            on_output(line)
        return RunResult(exit_code, "\n".join(lines))


@pytest.fixture
def resolver():
    resolver = Mock()
    resolver.resolve.return_value = "/opt/tools/fake-tool"
    return resolver


@pytest.fixture
def updates():
    return []


@pytest.fixture
def orchestrator(resolver, updates):
    return BatchOrchestrator(FakeBuilder(), resolver, updates.append)


def make_items(count, tmp_path=Path("/tmp")):
    return [BatchItem(f"source-{i}", "mp4", tmp_path) for i in range(1, count + 1)]


def run_with(runner):
    return patch("mediabatch.batch.orchestrator.run_process_with_callback", runner)


class TestHelpers:
    """Test fraction and matrix helpers."""

    def test_item_fraction_from_percent(self):
        assert item_fraction(ProgressSnapshot(percent=50.0)) == pytest.approx(0.5)

    def test_item_fraction_clamped(self):
        assert item_fraction(ProgressSnapshot(percent=150.0)) == 1.0
        assert item_fraction(ProgressSnapshot(percent=-5.0)) == 0.0

    def test_item_fraction_nested_playlist(self):
        snapshot = ProgressSnapshot(current_item=3, total_items=4, percent=50.0)
        assert item_fraction(snapshot) == pytest.approx((2 + 0.5) / 4)

    def test_expand_matrix_is_source_major(self, tmp_path):
        items = expand_matrix(["a.mov", "b.mov"], ["h264", "webm"], tmp_path)

        assert [(i.source, i.target) for i in items] == [
            ("a.mov", "h264"),
            ("a.mov", "webm"),
            ("b.mov", "h264"),
            ("b.mov", "webm"),
        ]
        assert all(i.output_dir == tmp_path for i in items)

    def test_expand_matrix_defaults_to_source_directory(self):
        items = expand_matrix([Path("/media/a.mov")], ["wav"])

        assert items[0].output_dir == Path("/media")


class TestBatchRun:
    """Test sequential execution and terminal states."""

    @pytest.mark.asyncio
    async def test_all_items_succeed(self, orchestrator, updates):
        runner = ScriptedRunner([(["[download]  100%"], 0)] * 3)

        with run_with(runner):
            result = await orchestrator.run(make_items(3))

        assert result.state is BatchState.COMPLETED
        assert orchestrator.state is BatchState.COMPLETED
        assert [r.index for r in result.results] == [1, 2, 3]
        assert [call[1] for call in runner.calls] == ["source-1", "source-2", "source-3"]
        assert updates[-1].state is BatchState.COMPLETED
        assert updates[-1].fraction == 1.0

    @pytest.mark.asyncio
    async def test_resolves_executable_once(self, orchestrator, resolver):
        with run_with(ScriptedRunner([])):
            await orchestrator.run(make_items(4))

        resolver.resolve.assert_called_once_with("fake-tool")

    @pytest.mark.asyncio
    async def test_matrix_aggregate_fraction(self, resolver, updates, tmp_path):
        orchestrator = BatchOrchestrator(FakeBuilder(), resolver, updates.append)
        items = expand_matrix(["a.mov", "b.mov"], ["h264", "webm", "wav"], tmp_path)
        runner = ScriptedRunner([
            (["[download]  100%"], 0),
            (["[download]  100%"], 0),
            (["[download]  50.0%"], 0),
        ])

        with run_with(runner):
            await orchestrator.run(items)

        halfway = [u for u in updates if u.item_index == 3 and u.percent == 50.0]
        assert halfway
        assert halfway[0].fraction == pytest.approx((2 + 0.5) / 6)

    @pytest.mark.asyncio
    async def test_failed_item_does_not_stop_batch(self, orchestrator):
        runner = ScriptedRunner([
            ([], 0),
            (["ERROR: Unsupported URL"], 1),
            ([], 0),
        ])

        with run_with(runner):
            result = await orchestrator.run(make_items(3))

        assert len(runner.calls) == 3
        assert result.state is BatchState.PARTIALLY_FAILED
        assert [r.success for r in result.results] == [True, False, True]
        failed = result.failed[0]
        assert failed.index == 2
        assert failed.failure is FailureKind.TOOL
        assert failed.exit_code == 1
        assert failed.message == "ERROR: Unsupported URL"
        assert orchestrator.progress.failed_count == 1

    @pytest.mark.asyncio
    async def test_missing_executable_fails_every_item(self, orchestrator, resolver):
        resolver.resolve.return_value = None
        runner = ScriptedRunner([])

        with run_with(runner):
            result = await orchestrator.run(make_items(2))

        assert runner.calls == []
        assert result.state is BatchState.PARTIALLY_FAILED
        assert all(r.failure is FailureKind.RESOLUTION for r in result.results)
        assert all(r.exit_code == 1 for r in result.results)
        assert result.results[0].message == "fake-tool not found"

    @pytest.mark.asyncio
    async def test_launch_failure_recorded(self, orchestrator):
        runner = ScriptedRunner([
            RunResult(1, "Failed to start: [Errno 13] Permission denied", launched=False),
            ([], 0),
        ])

        with run_with(runner):
            result = await orchestrator.run(make_items(2))

        assert result.state is BatchState.PARTIALLY_FAILED
        assert result.results[0].failure is FailureKind.LAUNCH
        assert "Permission denied" in result.results[0].message
        assert result.results[1].success

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, orchestrator, updates):
        result = await orchestrator.run([])

        assert result is None
        assert orchestrator.state is BatchState.IDLE
        assert updates == []

    @pytest.mark.asyncio
    async def test_single_use(self, orchestrator):
        with run_with(ScriptedRunner([])):
            await orchestrator.run(make_items(1))

            with pytest.raises(RuntimeError):
                await orchestrator.run(make_items(1))

    @pytest.mark.asyncio
    async def test_broken_progress_callback_does_not_stop_batch(self, resolver):
        orchestrator = BatchOrchestrator(FakeBuilder(), resolver, Mock(side_effect=ValueError("boom")))

        with run_with(ScriptedRunner([(["[download]  10.0%"], 0)])):
            result = await orchestrator.run(make_items(1))

        assert result.state is BatchState.COMPLETED


class TestProgressStream:
    """Test properties of the published progress records."""

    @pytest.mark.asyncio
    async def test_fraction_never_decreases(self, orchestrator, updates):
        runner = ScriptedRunner([
            (["[download]  10.0%", "[download]  80.0%", "[download]  30.0%"], 0),
            (["[download] Downloading item 1 of 3", "[download]  90.0%",
              "[download] Downloading item 2 of 3", "[download]   5.0%"], 0),
            (["[download] 250.0%"], 0),
        ])

        with run_with(runner):
            await orchestrator.run(make_items(3))

        fractions = [u.fraction for u in updates]
        assert fractions == sorted(fractions)
        assert all(0.0 <= f <= 1.0 for f in fractions)

    @pytest.mark.asyncio
    async def test_item_index_non_decreasing_and_bounded(self, orchestrator, updates):
        runner = ScriptedRunner([(["[download]  50.0%"], 0), ([], 1), ([], 0)])

        with run_with(runner):
            await orchestrator.run(make_items(3))

        indexes = [u.item_index for u in updates]
        assert indexes == sorted(indexes)
        assert all(u.item_index <= u.item_count == 3 for u in updates)

    @pytest.mark.asyncio
    async def test_current_item_bounded_by_total_items(self, orchestrator, updates):
        runner = ScriptedRunner([
            (["[download] Downloading item 2 of 4", "[download]  50.0%",
              "[download] Downloading item 12 of 10", "[download]  60.0%"], 0),
        ])

        with run_with(runner):
            await orchestrator.run(make_items(1))

        assert all(0 <= u.current_item <= u.total_items for u in updates)
        assert max(u.current_item for u in updates) == 2

    @pytest.mark.asyncio
    async def test_snapshot_reset_between_items(self, orchestrator, updates):
        runner = ScriptedRunner([
            (["[download] Destination: first.mp4", "[download]  100%"], 0),
            ([], 0),
        ])

        with run_with(runner):
            await orchestrator.run(make_items(2))

        second_start = next(u for u in updates if u.item_index == 2)
        assert second_start.label == ""
        assert second_start.percent == 0.0

    @pytest.mark.asyncio
    async def test_progress_records_are_immutable(self, orchestrator, updates):
        with run_with(ScriptedRunner([])):
            await orchestrator.run(make_items(1))

        with pytest.raises(AttributeError):
            updates[0].fraction = 0.5


class TestCancellation:
    """Test cancelling a batch."""

    @pytest.mark.asyncio
    async def test_cancel_during_item_stops_batch(self, orchestrator, updates):
        def cancelled_mid_item(on_output):
            on_output("[download]  40.0%")
            orchestrator.cancel()
            return RunResult(-15, "[download]  40.0%")

        runner = ScriptedRunner([([], 0), cancelled_mid_item, ([], 0)])

        with run_with(runner):
            result = await orchestrator.run(make_items(3))

        assert len(runner.calls) == 2
        assert result.state is BatchState.CANCELLED
        # The interrupted item is not reported as a failure
        assert [r.index for r in result.results] == [1]
        assert result.failed == []
        assert updates[-1].state is BatchState.CANCELLED
        assert updates[-1].fraction < 1.0

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, orchestrator):
        runner = ScriptedRunner([])
        orchestrator.cancel()

        with run_with(runner):
            result = await orchestrator.run(make_items(2))

        assert runner.calls == []
        assert result.state is BatchState.CANCELLED
        assert result.results == ()

    @pytest.mark.asyncio
    async def test_cancel_after_last_item_finished(self, orchestrator):
        def finishes_anyway(on_output):
            orchestrator.cancel()
            return RunResult(0, "")

        with run_with(ScriptedRunner([finishes_anyway])):
            result = await orchestrator.run(make_items(1))

        assert result.state is BatchState.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self, orchestrator):
        with run_with(ScriptedRunner([])):
            await orchestrator.run(make_items(1))

        orchestrator.cancel()
        orchestrator.cancel()

        assert orchestrator.state is BatchState.COMPLETED
        assert not orchestrator.cancel_requested

    @pytest.mark.asyncio
    async def test_cancel_terminates_running_process(self, orchestrator):
        orchestrator.handle = Mock()
        orchestrator.cancel()

        orchestrator.handle.terminate.assert_called_once()
        assert orchestrator.cancel_requested


class PythonScriptBuilder:
    """Runs the item's source as a Python snippet."""

    tool = "python"

    def build(self, executable, item):
        return [executable, "-c", item.source]

    def parser_for(self, item):
        return parse_line


class TestWithRealProcesses:
    """Exercise the orchestrator against real child interpreters."""

    @pytest.fixture
    def python_resolver(self):
        resolver = Mock()
        resolver.resolve.return_value = sys.executable
        return resolver

    @pytest.mark.asyncio
    async def test_partial_failure(self, python_resolver, updates, tmp_path):
        orchestrator = BatchOrchestrator(PythonScriptBuilder(), python_resolver, updates.append)
        items = [
            BatchItem("print('[download]  50.0%'); print('[download] 100%')", "", tmp_path),
            BatchItem("import sys; print('ERROR: broken'); sys.exit(2)", "", tmp_path),
            BatchItem("print('[download] Destination: out/last.mp4')", "", tmp_path),
        ]

        result = await orchestrator.run(items)

        assert result.state is BatchState.PARTIALLY_FAILED
        assert result.results[1].exit_code == 2
        assert result.results[1].message == "ERROR: broken"
        assert result.results[2].success
        assert any(u.label == "last.mp4" for u in updates)

    @pytest.mark.asyncio
    async def test_cancel_kills_running_child(self, python_resolver, tmp_path):
        sleeper = "import time; print('[download]  10.0%', flush=True); time.sleep(30)"
        orchestrator = BatchOrchestrator(PythonScriptBuilder(), python_resolver)

        def on_progress(update):
            if update.percent == 10.0:
                orchestrator.cancel()

        orchestrator.progress_callback = on_progress
        items = [BatchItem(sleeper, "", tmp_path) for _ in range(3)]

        result = await orchestrator.run(items)

        assert result.state is BatchState.CANCELLED
        assert result.results == ()
