"""Per-item stage pipeline: extract -> transcribe -> convert -> mux -> finalize.

Every intermediate lives in a per-item working directory under the
processing root. Each intermediate is removed as soon as its consumer stage
returns (success or failure), and the working directory itself is removed
on every exit path, so a failed item never leaves temp files behind and
never shows up in the output directory.
"""

import logging
import os
import shutil
import tempfile
import threading
import time
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional
from captionflow.config.models import AppConfig
from captionflow.domain.errors import CaptionFlowError, CommandCancelled, PipelineCancelled, StageError
from captionflow.domain.events import StageCompleted
from captionflow.domain.models import ItemStatus, Stage, WorkItem
from captionflow.infrastructure.event_bus import EventBus
from captionflow.infrastructure.ffmpeg import FFmpegAdapter
from captionflow.infrastructure.housekeeping import WORK_DIR_PREFIX
from captionflow.infrastructure.whisper import WhisperAdapter

AUDIO_NAME = "audio.wav"
TRANSCRIPT_PREFIX = "transcript"
SUBTITLE_NAME = "subtitle.ass"
VIDEOS_SUBDIR = "videos"


def relocate_file(src: Path, dst: Path) -> Path:
    """Moves `src` to `dst`, replacing it.

    Falls back to copying through a `.tmp` sibling (then renaming) when a
    plain rename is impossible, e.g. across filesystems, so `dst` never
    appears half-written.
    """
    try:
        os.replace(src, dst)
        return dst
    except OSError:
        pass
    tmp_path = dst.with_name(f"{dst.name}.tmp")
    try:
        shutil.copy2(src, tmp_path)
        os.replace(tmp_path, dst)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    src.unlink()
    return dst


class StagePipeline:
    """Runs one WorkItem through the stages, strictly in order."""

    def __init__(
        self,
        config: AppConfig,
        ffmpeg: FFmpegAdapter,
        whisper: WhisperAdapter,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.ffmpeg = ffmpeg
        self.whisper = whisper
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    @property
    def processing_root(self) -> Path:
        return Path(self.config.paths.processing)

    @property
    def videos_dir(self) -> Path:
        return Path(self.config.paths.output) / VIDEOS_SUBDIR

    def process(self, item: WorkItem, cancel_event: Optional[threading.Event] = None) -> WorkItem:
        """Runs all stages; raises StageError naming the stage that failed."""
        start_time = time.monotonic()
        item.status = ItemStatus.PROCESSING
        self.logger.info(f"PROCESS_START: {item.name}")
        try:
            with ExitStack() as stack:
                item.work_dir = self._create_work_dir(item)
                stack.callback(self._remove_work_dir, item.work_dir)

                self._run_stage(Stage.EXTRACT, item, cancel_event, self._extract)
                with self._consumed(item.audio_path):
                    self._run_stage(Stage.TRANSCRIBE, item, cancel_event, self._transcribe)

                self._run_stage(Stage.CONVERT, item, cancel_event, self._convert)
                converted = item.subtitle_path if item.subtitle_path != item.transcript_path else None
                with self._consumed(converted):
                    self._run_stage(Stage.MUX, item, cancel_event, self._mux)

                self._finalize(item)
        except StageError as e:
            item.failed_stage = Stage(e.stage)
            item.status = ItemStatus.CANCELLED if e.cancelled else ItemStatus.FAILED
            item.error_message = str(e)
            raise
        finally:
            item.duration_seconds = time.monotonic() - start_time

        item.status = ItemStatus.COMPLETED
        self.logger.info(
            f"PROCESS_END: {item.name} status=completed elapsed={item.duration_seconds:.2f}s "
            f"output={item.output_path}"
        )
        return item

    def _run_stage(
        self,
        stage: Stage,
        item: WorkItem,
        cancel_event: Optional[threading.Event],
        func: Callable[[WorkItem, Optional[threading.Event]], Path],
    ) -> Path:
        # A stage already running is allowed to finish; the next one is not started
        if cancel_event is not None and cancel_event.is_set():
            raise StageError(stage.value, item.name, PipelineCancelled(item.name))
        try:
            artifact = func(item, cancel_event)
        except (CaptionFlowError, OSError, UnicodeError) as e:
            raise StageError(stage.value, item.name, e) from e
        self.logger.debug(f"STAGE_DONE: {item.name} stage={stage.value} artifact={artifact}")
        if self.event_bus is not None:
            self.event_bus.publish(StageCompleted(item=item, stage=stage, artifact=artifact))
        return artifact

    def _create_work_dir(self, item: WorkItem) -> Path:
        self.processing_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{WORK_DIR_PREFIX}{item.source_path.stem[:40]}-", dir=self.processing_root))

    def _remove_work_dir(self, work_dir: Path) -> None:
        try:
            shutil.rmtree(work_dir)
            self.logger.debug(f"Cleaned up work dir: {work_dir}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to cleanup work dir {work_dir}: {e}")

    @contextmanager
    def _consumed(self, artifact: Optional[Path]) -> Iterator[None]:
        """Removes `artifact` once the enclosed consumer stage returns or raises."""
        try:
            yield
        finally:
            if artifact is not None:
                try:
                    artifact.unlink(missing_ok=True)
                    self.logger.debug(f"Cleaned up temp file: {artifact}")
                except OSError as e:
                    self.logger.warning(f"Failed to cleanup temp file {artifact}: {e}")

    def _extract(self, item: WorkItem, cancel_event: Optional[threading.Event]) -> Path:
        item.audio_path = self.ffmpeg.extract_audio(item.source_path, item.work_dir / AUDIO_NAME, cancel_event)
        return item.audio_path

    def _transcribe(self, item: WorkItem, cancel_event: Optional[threading.Event]) -> Path:
        srt_path = self.whisper.transcribe(item.audio_path, item.work_dir / TRANSCRIPT_PREFIX, cancel_event)
        if not srt_path.exists():
            raise CaptionFlowError(f"transcript not produced: {srt_path}")
        item.transcript_path = srt_path
        self.logger.info(f"Transcription completed: {item.name}")
        return srt_path

    def _convert(self, item: WorkItem, cancel_event: Optional[threading.Event]) -> Path:
        try:
            item.subtitle_path = self.ffmpeg.convert_subtitle(
                item.transcript_path, item.work_dir / SUBTITLE_NAME, cancel_event
            )
        except CommandCancelled:
            raise
        except CaptionFlowError as e:
            if not self.config.ffmpeg.subtitle_fallback:
                raise
            self.logger.warning(f"Failed to convert SRT to ASS for {item.name}, using SRT: {e}")
            (item.work_dir / SUBTITLE_NAME).unlink(missing_ok=True)
            item.subtitle_path = item.transcript_path
        return item.subtitle_path

    def _mux(self, item: WorkItem, cancel_event: Optional[threading.Event]) -> Path:
        temp_output = item.work_dir / f"output{item.source_path.suffix.lower()}"
        self.ffmpeg.burn_subtitles(item.source_path, item.subtitle_path, temp_output, cancel_event)
        if not temp_output.exists():
            raise CaptionFlowError(f"muxed output not produced: {temp_output}")
        self.videos_dir.mkdir(parents=True, exist_ok=True)
        item.output_path = relocate_file(temp_output, self.videos_dir / item.name)
        self.logger.info(f"Subtitle burned successfully: {item.output_path}")
        return item.output_path

    def _finalize(self, item: WorkItem) -> None:
        """Copies the SRT to the output root and archives the source; failures only warn."""
        srt_dest = Path(self.config.paths.output) / f"{item.source_path.stem}.srt"
        try:
            shutil.copyfile(item.transcript_path, srt_dest)
            item.subtitle_output_path = srt_dest
        except OSError as e:
            self.logger.warning(f"Failed to copy SRT to output for {item.name}: {e}")

        archive_dir = Path(self.config.paths.archive)
        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
            item.archived_path = relocate_file(item.source_path, archive_dir / item.name)
            self.logger.info(f"Moved original to archive: {item.archived_path}")
        except OSError as e:
            self.logger.warning(f"Failed to move original to archive for {item.name}: {e}")

        if self.event_bus is not None:
            self.event_bus.publish(StageCompleted(item=item, stage=Stage.FINALIZE, artifact=item.subtitle_output_path))
