import os
import signal
import threading
import typer
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional
from rich.console import Console
from rich.table import Table
from captionflow.config.loader import load_config
from captionflow.config.models import AppConfig
from captionflow.domain.errors import ConfigError, WatcherError
from captionflow.domain.events import RunFinished
from captionflow.domain.models import BatchSummary
from captionflow.infrastructure.command_runner import CommandRunner
from captionflow.infrastructure.event_bus import EventBus
from captionflow.infrastructure.ffmpeg import FFmpegAdapter
from captionflow.infrastructure.file_scanner import FileScanner
from captionflow.infrastructure.housekeeping import HousekeepingService
from captionflow.infrastructure.logging import setup_logging
from captionflow.infrastructure.whisper import WhisperAdapter
from captionflow.pipeline.admission import AdmissionGate
from captionflow.pipeline.dispatcher import Dispatcher
from captionflow.pipeline.stages import VIDEOS_SUBDIR, StagePipeline
from captionflow.pipeline.watcher import DirectoryWatcher
from captionflow.summarizer.generator import GeminiTextGenerator
from captionflow.summarizer.keyring import KeyRing
from captionflow.summarizer.summarizer import Summarizer
from captionflow.ui.reporter import ConsoleReporter

app = typer.Typer(help="CaptionFlow - transcribe videos with whisper.cpp and burn in subtitles with ffmpeg")
console = Console()


def ensure_directories(config: AppConfig) -> None:
    for directory in (
        config.paths.input,
        config.paths.processing,
        config.paths.output,
        config.paths.archive,
        str(Path(config.paths.output) / VIDEOS_SUBDIR),
    ):
        Path(directory).mkdir(parents=True, exist_ok=True)


def build_dispatcher(config: AppConfig, event_bus: EventBus, cancel_event: threading.Event) -> Dispatcher:
    runner = CommandRunner()
    pipeline = StagePipeline(
        config=config,
        ffmpeg=FFmpegAdapter(runner, config.ffmpeg),
        whisper=WhisperAdapter(runner, config.whisper),
        event_bus=event_bus,
    )
    gate = AdmissionGate(capacity=config.performance.max_concurrent)
    return Dispatcher(pipeline, gate, event_bus, cancel_event)


@contextmanager
def cancel_on_signals(dispatcher: Dispatcher) -> Iterator[None]:
    """Routes SIGINT/SIGTERM to the dispatcher's cancellation signal."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, _frame):
        dispatcher.logger.info(f"Shutdown signal received ({signal.Signals(signum).name})")
        dispatcher.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def parse_targets(target: str, input_dir: Path) -> List[Path]:
    """Comma-separated names are resolved against the input directory."""
    paths = []
    for name in target.split(","):
        name = name.strip()
        if not name:
            continue
        candidate = Path(name)
        paths.append(candidate if candidate.is_absolute() else input_dir / candidate)
    return paths


def show_usage(config: AppConfig) -> None:
    console.print("Usage:")
    console.print("  captionflow --target-all             # Process ALL video files in input", highlight=False)
    console.print("  captionflow --target <file>[,<file>] # Process specific file(s)", highlight=False)
    console.print("  captionflow --watch                  # Watch mode (monitor folder)", highlight=False)
    console.print("  captionflow --summarize              # Summarize SRTs via Gemini", highlight=False)
    console.print()

    input_dir = Path(config.paths.input)
    table = Table(title=f"Available files in {input_dir}")
    table.add_column("File")
    table.add_column("Size (MB)", justify="right")
    try:
        files = FileScanner(config.watcher.extensions).scan(input_dir)
    except OSError as e:
        typer.secho(f"Failed to read input directory: {e}", fg=typer.colors.RED, err=True)
        return
    for path in files:
        table.add_row(path.name, f"{path.stat().st_size / 1024 / 1024:.2f}")
    if files:
        console.print(table)
    else:
        console.print(f"No video files found in {input_dir}")


def run_summarize(config: AppConfig) -> BatchSummary:
    keys_env = os.environ.get(config.summarizer.api_keys_env, "")
    try:
        keys = KeyRing.from_csv(keys_env)
    except ValueError:
        typer.secho(
            f"Error: {config.summarizer.api_keys_env} must hold comma-separated API keys",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    output_dir = Path(config.paths.output)
    dest_dir = output_dir / config.summarizer.dest_subdir
    console.print(f"Summarizing {output_dir}/*.srt with {config.summarizer.model} ({len(keys)} API keys)")
    summarizer = Summarizer(GeminiTextGenerator(config.summarizer.model), keys, config.summarizer.language)
    summary = summarizer.summarize_all(output_dir, dest_dir)
    console.print(f"Summaries: {summary.succeeded} done, {summary.failed} failed -> {dest_dir}")
    return summary


def run_watch(config: AppConfig, dispatcher: Dispatcher, event_bus: EventBus) -> None:
    watcher = DirectoryWatcher(
        directory=Path(config.paths.input),
        dispatcher=dispatcher,
        extensions=config.watcher.extensions,
        debounce_s=config.watcher.debounce_s,
        stable_checks=config.watcher.stable_checks,
        poll_interval_s=config.watcher.poll_interval_s,
        event_bus=event_bus,
    )
    with cancel_on_signals(dispatcher):
        try:
            watcher.run(dispatcher.cancel_event)
        finally:
            event_bus.publish(RunFinished(succeeded=dispatcher.succeeded, failed=dispatcher.failed))


@app.command()
def run(
    target: Optional[str] = typer.Option(None, "--target", help="File name(s) in the input folder, comma-separated"),
    target_all: bool = typer.Option(False, "--target-all", help="Process all video files in the input folder"),
    watch: bool = typer.Option(False, "--watch", help="Watch the input folder and process new videos"),
    summarize: bool = typer.Option(False, "--summarize", help="Summarize produced SRT files via Gemini"),
    config_path: Path = typer.Option(Path("conf/captionflow.yaml"), "--config", "-c", help="Path to YAML config"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-j", min=1, help="Override max concurrent videos"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable debug logging (also echoed to stderr)"),
):
    """Run one mode: --target, --target-all, --watch or --summarize."""
    modes = [name for name, on in (
        ("--target", target is not None),
        ("--target-all", target_all),
        ("--watch", watch),
        ("--summarize", summarize),
    ) if on]
    if len(modes) > 1:
        typer.secho(f"Error: choose only one mode, got {', '.join(modes)}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        typer.secho(f"Failed to load config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if concurrency is not None:
        config.performance.max_concurrent = concurrency
    if debug:
        config.logging.level = "debug"

    try:
        ensure_directories(config)
    except OSError as e:
        typer.secho(f"Failed to create directories: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    log_file = Path(config.logging.file) if config.logging.file else Path(config.paths.output) / "pipeline.log"
    logger = setup_logging(log_file, level=config.logging.level, console=debug)
    logger.info(
        f"CaptionFlow started: mode={modes[0] if modes else 'usage'}, "
        f"max_concurrent={config.performance.max_concurrent}, encoder={config.ffmpeg.encoder}, "
        f"whisper_threads={config.whisper.threads}"
    )

    if summarize:
        run_summarize(config)
        return

    if not modes:
        show_usage(config)
        return

    HousekeepingService().cleanup_stale_work_dirs(Path(config.paths.processing))

    event_bus = EventBus()
    ConsoleReporter(event_bus, console)
    cancel_event = threading.Event()
    dispatcher = build_dispatcher(config, event_bus, cancel_event)

    if watch:
        try:
            run_watch(config, dispatcher, event_bus)
        except WatcherError as e:
            logger.error(f"Watcher error: {e}")
            typer.secho(f"Watcher error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        logger.info("Pipeline stopped")
        return

    input_dir = Path(config.paths.input)
    if target_all:
        paths = FileScanner(config.watcher.extensions).scan(input_dir)
        if not paths:
            console.print(f"No video files found in {input_dir}")
            return
    else:
        paths = parse_targets(target, input_dir)
        if not paths:
            typer.secho("Error: no file names given to --target", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    console.print(f"Processing {len(paths)} file(s), {config.performance.max_concurrent} at a time")
    with cancel_on_signals(dispatcher):
        dispatcher.run_batch(paths)


if __name__ == "__main__":
    app()
