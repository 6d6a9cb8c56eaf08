import threading
import pytest
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set
from captionflow.config.models import AppConfig
from captionflow.domain.errors import CommandCancelled, CommandError
from captionflow.infrastructure.event_bus import EventBus

WHISPER_BIN = "whisper-cli"

SAMPLE_SRT = "1\n00:00:00,000 --> 00:00:02,000\nHello there\n\n2\n00:00:02,000 --> 00:00:04,000\nGeneral Kenobi\n"

# ============================================================================
# Fake command runner
# ============================================================================

class FakeCommandRunner:
    """In-memory stand-in for CommandRunner.

    Classifies each call by stage, writes the file the real tool would
    write, and can be scripted to fail or to block inside a stage.

    Args:
        fail_stages: Stages that raise CommandError. "mux" fails both
            encoders, "mux_hw" only the hardware one.
        partial_on_failure: Write the output file before failing.
        block_stage: Stage whose calls wait on `release` before finishing.
        cancel_aware: While blocked, raise CommandCancelled if the
            caller's cancel event fires.
    """

    def __init__(
        self,
        fail_stages: Optional[Set[str]] = None,
        partial_on_failure: bool = True,
        block_stage: Optional[str] = None,
        cancel_aware: bool = False,
        whisper_binary: str = WHISPER_BIN,
    ):
        self.fail_stages = set(fail_stages or ())
        self.partial_on_failure = partial_on_failure
        self.block_stage = block_stage
        self.cancel_aware = cancel_aware
        self.whisper_binary = whisper_binary
        self.release = threading.Event()
        self.calls: List[Dict] = []
        self.active = 0
        self.peak = 0
        self.blocked = threading.Semaphore(0)  # one permit per call that reached the block
        self._lock = threading.Lock()

    def classify(self, program: str, args: Sequence[str]) -> str:
        if program == self.whisper_binary:
            return "transcribe"
        if "-vn" in args:
            return "extract"
        if "-vf" in args:
            return "mux_hw" if "-b:v" in args else "mux_sw"
        return "convert"

    def stages(self) -> List[str]:
        return [c["stage"] for c in self.calls]

    def _output_for(self, stage: str, args: Sequence[str]) -> Path:
        if stage == "transcribe":
            prefix = args[args.index("--output-file") + 1]
            return Path(f"{prefix}.srt")
        return Path(args[-1])

    def _write(self, stage: str, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if stage == "transcribe":
            path.write_text(SAMPLE_SRT)
        else:
            path.write_bytes(f"{stage} output".encode())

    def run(self, program, args, cwd=None, cancel_event=None) -> str:
        args = [str(a) for a in args]
        stage = self.classify(program, args)
        with self._lock:
            self.calls.append({"program": program, "args": args, "cwd": cwd, "stage": stage})
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if cancel_event is not None and cancel_event.is_set():
                raise CommandCancelled(program)
            if stage == self.block_stage:
                self.blocked.release()
                while not self.release.wait(0.01):
                    if self.cancel_aware and cancel_event is not None and cancel_event.is_set():
                        raise CommandCancelled(program)

            output = self._output_for(stage, args)
            failing = stage in self.fail_stages or (stage.startswith("mux") and "mux" in self.fail_stages)
            if failing:
                if self.partial_on_failure:
                    self._write(stage, output)
                raise CommandError(program, 1, f"{stage} exploded")
            self._write(stage, output)
            return ""
        finally:
            with self._lock:
                self.active -= 1

# ============================================================================
# Configuration Fixtures
# ============================================================================

def make_config(root: Path, **overrides) -> AppConfig:
    data = {
        "whisper": {
            "model_path": "models/ggml-base.bin",
            "binary_path": WHISPER_BIN,
            "language": "en",
            "prompt": "Kubernetes, Docker",
            "threads": 4,
        },
        "ffmpeg": {
            "encoder": "h264_videotoolbox",
            "video_bitrate": "5M",
        },
        "paths": {
            "input": str(root / "input"),
            "processing": str(root / "processing"),
            "output": str(root / "output"),
            "archive": str(root / "archived"),
        },
        "performance": {"max_concurrent": 2},
        "watcher": {"debounce_s": 0.0},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return AppConfig(**data)

@pytest.fixture
def app_config(tmp_path):
    """AppConfig whose directories live under tmp_path (input dir created)."""
    config = make_config(tmp_path)
    Path(config.paths.input).mkdir(parents=True)
    return config

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "captionflow.yaml"
    content = {
        "whisper": {
            "model_path": "models/test.bin",
            "binary_path": "./whisper",
            "language": "en",
            "prompt": "test",
        },
        "ffmpeg": {
            "video_bitrate": "5M",
            "audio_codec": "copy",
            "encoder": "h264_videotoolbox",
        },
        "paths": {
            "input": str(tmp_path / "data" / "input"),
            "processing": str(tmp_path / "data" / "processing"),
            "output": str(tmp_path / "data" / "output"),
            "archive": str(tmp_path / "data" / "archived"),
        },
        "logging": {"level": "info"},
    }
    with open(conf_file, "w") as f:
        yaml.dump(content, f)
    return conf_file

# ============================================================================
# EventBus / runner Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def fake_runner():
    return FakeCommandRunner()

@pytest.fixture
def runner_factory():
    """Builds FakeCommandRunner instances with custom failure/blocking scripts."""
    return FakeCommandRunner

@pytest.fixture
def sample_srt():
    return SAMPLE_SRT

@pytest.fixture
def make_video(app_config):
    """Creates a dummy video in the input directory."""
    def _make(name: str = "clip.mp4") -> Path:
        path = Path(app_config.paths.input) / name
        path.write_bytes(b"dummy video content " * 100)
        return path
    return _make

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")

@pytest.fixture
def restore_root_logger():
    """setup_logging() reconfigures the root logger; undo it after the test."""
    import logging
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
