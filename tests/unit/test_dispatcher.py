import threading
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from captionflow.domain.errors import CommandError
from captionflow.domain.events import (
    ItemAdmitted, ItemCompleted, ItemFailed, ItemRejected, ItemStarted, RunFinished,
)
from captionflow.domain.models import ItemStatus, WorkItem
from captionflow.infrastructure.ffmpeg import FFmpegAdapter
from captionflow.infrastructure.whisper import WhisperAdapter
from captionflow.pipeline.admission import AdmissionGate
from captionflow.pipeline.dispatcher import Dispatcher
from captionflow.pipeline.stages import StagePipeline

def make_dispatcher(config, runner, event_bus, capacity=2):
    pipeline = StagePipeline(
        config=config,
        ffmpeg=FFmpegAdapter(runner, config.ffmpeg),
        whisper=WhisperAdapter(runner, config.whisper),
        event_bus=event_bus,
    )
    return Dispatcher(pipeline, AdmissionGate(capacity=capacity, poll_interval=0.02), event_bus)

def wait_blocked(runner, count, timeout=5):
    for _ in range(count):
        assert runner.blocked.acquire(timeout=timeout), "worker never reached the blocking stage"

def test_single_item_events(app_config, fake_runner, make_video, event_bus):
    received = []
    for event_type in (ItemAdmitted, ItemStarted, ItemCompleted, ItemFailed):
        event_bus.subscribe(event_type, lambda e: received.append(type(e)))
    dispatcher = make_dispatcher(app_config, fake_runner, event_bus)

    item = dispatcher.submit(make_video()).result(timeout=5)

    assert item.status == ItemStatus.COMPLETED
    assert received == [ItemAdmitted, ItemStarted, ItemCompleted]
    assert dispatcher.drain(timeout=5)
    assert dispatcher.outstanding == 0
    assert dispatcher.succeeded == 1

@pytest.mark.parametrize("capacity,count", [(1, 3), (2, 5), (3, 4)])
def test_concurrency_never_exceeds_capacity(app_config, runner_factory, make_video, event_bus, capacity, count):
    runner = runner_factory(block_stage="extract")
    dispatcher = make_dispatcher(app_config, runner, event_bus, capacity=capacity)

    futures = [dispatcher.submit(make_video(f"clip{i}.mp4")) for i in range(count)]
    wait_blocked(runner, capacity)
    # Let queued workers try to sneak past the gate
    assert not runner.blocked.acquire(timeout=0.2)
    assert dispatcher.gate.in_use == capacity
    runner.release.set()

    items = [f.result(timeout=10) for f in futures]
    assert all(item.status == ItemStatus.COMPLETED for item in items)
    assert dispatcher.gate.peak == capacity
    assert runner.peak == capacity
    assert dispatcher.gate.in_use == 0

def test_duplicate_in_flight_rejected(app_config, runner_factory, make_video, event_bus):
    runner = runner_factory(block_stage="extract")
    rejected = []
    event_bus.subscribe(ItemRejected, rejected.append)
    dispatcher = make_dispatcher(app_config, runner, event_bus)
    video = make_video("talk.mp4")

    first = dispatcher.submit(video)
    wait_blocked(runner, 1)
    second = dispatcher.submit(Path(str(video)))

    assert first is not None
    assert second is None
    assert rejected[0].reason == "already in flight"
    assert dispatcher.in_flight_paths() == [video.resolve()]

    runner.release.set()
    assert first.result(timeout=5).status == ItemStatus.COMPLETED
    assert dispatcher.drain(timeout=5)
    assert dispatcher.in_flight_paths() == []
    assert runner.stages().count("extract") == 1

def test_run_batch_counts_missing_files(app_config, fake_runner, make_video, event_bus):
    finished = []
    rejected = []
    event_bus.subscribe(RunFinished, finished.append)
    event_bus.subscribe(ItemRejected, rejected.append)
    dispatcher = make_dispatcher(app_config, fake_runner, event_bus)
    missing = Path(app_config.paths.input) / "missing.mp4"

    summary = dispatcher.run_batch([make_video("a.mp4"), missing, make_video("b.mp4")])

    assert summary.succeeded == 2
    assert summary.failed == 1
    assert summary.total == 3
    assert [r.path for r in rejected] == [missing]
    assert finished[0].succeeded == 2
    assert finished[0].failed == 1

def test_run_batch_failure_isolated(app_config, runner_factory, make_video, event_bus):
    class BrokenFile(runner_factory):
        def run(self, program, args, cwd=None, cancel_event=None):
            if self.classify(program, args) == "extract" and "broken" in args[1]:
                raise CommandError(program, 1, "moov atom not found")
            return super().run(program, args, cwd=cwd, cancel_event=cancel_event)

    failed = []
    event_bus.subscribe(ItemFailed, failed.append)
    dispatcher = make_dispatcher(app_config, BrokenFile(), event_bus)
    good = make_video("good.mp4")
    broken = make_video("broken.mp4")

    summary = dispatcher.run_batch([broken, good])

    assert summary.succeeded == 1
    assert summary.failed == 1
    assert failed[0].item.name == "broken.mp4"
    assert failed[0].error_message.startswith("extract: ")
    assert broken.exists()
    assert (Path(app_config.paths.output) / "videos" / "good.mp4").exists()
    assert not (Path(app_config.paths.output) / "videos" / "broken.mp4").exists()

def test_run_batch_duplicate_path_counts_as_failure(app_config, fake_runner, make_video, event_bus):
    dispatcher = make_dispatcher(app_config, fake_runner, event_bus)
    video = make_video()

    summary = dispatcher.run_batch([video, video])

    assert summary.succeeded == 1
    assert summary.failed == 1

def test_run_batch_empty(app_config, fake_runner, event_bus):
    summary = make_dispatcher(app_config, fake_runner, event_bus).run_batch([])
    assert summary.total == 0

def test_cancel_drains_in_flight_and_fails_queued(app_config, runner_factory, make_video, event_bus):
    runner = runner_factory(block_stage="extract")
    dispatcher = make_dispatcher(app_config, runner, event_bus, capacity=2)
    videos = [make_video(f"clip{i}.mp4") for i in range(5)]

    futures = [dispatcher.submit(v) for v in videos]
    wait_blocked(runner, 2)
    dispatcher.cancel()

    # In-flight extracts are still running, so drain cannot finish yet
    assert not dispatcher.drain(timeout=0.2)
    runner.release.set()
    assert dispatcher.drain(timeout=10)

    items = [f.result(timeout=1) for f in futures]
    assert all(item.status == ItemStatus.CANCELLED for item in items)
    assert runner.stages() == ["extract", "extract"]
    assert dispatcher.failed == 5
    assert dispatcher.succeeded == 0
    assert all(v.exists() for v in videos)
    assert list(Path(app_config.paths.processing).iterdir()) == []
    assert dispatcher.gate.in_use == 0

def test_cancel_interrupts_running_command(app_config, runner_factory, make_video, event_bus):
    runner = runner_factory(block_stage="extract", cancel_aware=True)
    dispatcher = make_dispatcher(app_config, runner, event_bus, capacity=1)

    future = dispatcher.submit(make_video())
    wait_blocked(runner, 1)
    dispatcher.cancel()

    assert dispatcher.drain(timeout=5)
    item = future.result(timeout=1)
    assert item.status == ItemStatus.CANCELLED
    assert item.failed_stage.value == "extract"

def test_submit_after_cancel_never_starts(app_config, fake_runner, make_video, event_bus):
    dispatcher = make_dispatcher(app_config, fake_runner, event_bus)
    dispatcher.cancel()

    item = dispatcher.submit(make_video()).result(timeout=5)

    assert item.status == ItemStatus.CANCELLED
    assert fake_runner.calls == []

def test_unexpected_error_releases_slot(event_bus):
    pipeline = MagicMock()
    pipeline.process.side_effect = RuntimeError("boom")
    gate = AdmissionGate(capacity=1)
    dispatcher = Dispatcher(pipeline, gate, event_bus)

    item = dispatcher.submit(Path("whatever.mp4")).result(timeout=5)

    assert item.status == ItemStatus.FAILED
    assert "boom" in item.error_message
    assert gate.in_use == 0
    assert dispatcher.failed == 1
