import logging
import threading
from pathlib import Path
from typing import List, Optional
from captionflow.config.models import WhisperConfig
from captionflow.infrastructure.command_runner import Runner

class WhisperAdapter:
    """Wrapper around the whisper.cpp CLI producing SRT subtitles."""

    def __init__(self, runner: Runner, config: WhisperConfig):
        self.runner = runner
        self.config = config
        self.logger = logging.getLogger(__name__)

    def _build_args(self, audio_path: Path, output_prefix: Path) -> List[str]:
        args = [
            "-m", self.config.model_path,
            "-f", str(audio_path),
            "-osrt",
            "-l", self.config.language,  # forced, auto-detect hallucinates on short clips
            "-t", str(self.config.threads),
            "-ml", str(self.config.max_len),
            "-mc", str(self.config.max_context),
            "-bo", str(self.config.best_of),
        ]
        if self.config.prompt:
            args.extend(["--prompt", self.config.prompt])
        if not self.config.use_gpu:
            args.append("-ng")
        args.extend(["--output-file", str(output_prefix)])
        return args

    def transcribe(self, audio_path: Path, output_prefix: Path, cancel_event: Optional[threading.Event] = None) -> Path:
        """Runs whisper and returns the SRT it writes at `<output_prefix>.srt`."""
        self.logger.info(
            f"Transcribing with {self.config.threads} threads (lang={self.config.language}): {audio_path.name}"
        )
        self.runner.run(self.config.binary_path, self._build_args(audio_path, output_prefix), cancel_event=cancel_event)
        return output_prefix.with_name(f"{output_prefix.name}.srt")
