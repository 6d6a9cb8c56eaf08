import logging
import threading
from pathlib import Path
from typing import List, Optional
from captionflow.config.models import FFmpegConfig
from captionflow.domain.errors import CommandError
from captionflow.infrastructure.command_runner import Runner

AUDIO_SAMPLE_RATE = 16000
AUDIO_CHANNELS = 1

class FFmpegAdapter:
    """Wrapper around ffmpeg for audio extraction, subtitle conversion and burn-in."""

    def __init__(self, runner: Runner, config: FFmpegConfig):
        self.runner = runner
        self.config = config
        self.logger = logging.getLogger(__name__)

    def _extract_audio_args(self, video_path: Path, audio_path: Path) -> List[str]:
        # 16 kHz mono PCM is what whisper.cpp expects
        return [
            "-i", str(video_path),
            "-vn",
            "-ar", str(AUDIO_SAMPLE_RATE),
            "-ac", str(AUDIO_CHANNELS),
            "-c:a", "pcm_s16le",
            "-threads", "0",
            "-y",
            str(audio_path),
        ]

    def _convert_subtitle_args(self, srt_path: Path, ass_path: Path) -> List[str]:
        return ["-i", str(srt_path), "-y", str(ass_path)]

    def _burn_args(self, video_path: Path, subtitle_name: str, output_path: Path, software: bool = False) -> List[str]:
        """Builds the burn-in command; `subtitle_name` is relative to the working dir."""
        cmd = [
            "-y",
            "-i", str(video_path),
            "-vf", f"subtitles={subtitle_name}",
        ]
        if software:
            cmd.extend([
                "-c:v", self.config.software_encoder,
                "-preset", self.config.preset,
                "-crf", str(self.config.crf),
                "-c:a", "copy",
            ])
        else:
            cmd.extend(["-c:v", self.config.encoder, "-b:v", self.config.video_bitrate])
            if self.config.max_bitrate:
                cmd.extend(["-maxrate", self.config.max_bitrate])
            if self.config.bufsize:
                cmd.extend(["-bufsize", self.config.bufsize])
            cmd.extend(["-c:a", self.config.audio_codec])
        cmd.append(str(output_path))
        return cmd

    def extract_audio(self, video_path: Path, audio_path: Path, cancel_event: Optional[threading.Event] = None) -> Path:
        self.logger.info(f"Extracting audio: {video_path.name}")
        self.runner.run(self.config.binary, self._extract_audio_args(video_path, audio_path), cancel_event=cancel_event)
        return audio_path

    def convert_subtitle(self, srt_path: Path, ass_path: Path, cancel_event: Optional[threading.Event] = None) -> Path:
        self.runner.run(self.config.binary, self._convert_subtitle_args(srt_path, ass_path), cancel_event=cancel_event)
        return ass_path

    def burn_subtitles(
        self,
        video_path: Path,
        subtitle_path: Path,
        output_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """Burns `subtitle_path` into the video, running inside the subtitle's directory.

        The subtitles filter gets a bare file name so no filter escaping is
        needed. A hardware encoder failure is retried once with the software
        encoder; cancellation is never retried.
        """
        work_dir = subtitle_path.parent
        video_path = video_path.resolve()
        output_path = output_path.resolve()

        hw_args = self._burn_args(video_path, subtitle_path.name, output_path)
        try:
            self.runner.run(self.config.binary, hw_args, cwd=work_dir, cancel_event=cancel_event)
            return output_path
        except CommandError as e:
            if self.config.encoder == self.config.software_encoder:
                raise
            self.logger.warning(
                f"Hardware encoder {self.config.encoder} failed for {video_path.name}, "
                f"trying {self.config.software_encoder}: {e}"
            )

        sw_args = self._burn_args(video_path, subtitle_path.name, output_path, software=True)
        self.runner.run(self.config.binary, sw_args, cwd=work_dir, cancel_event=cancel_event)
        self.logger.info(f"Subtitle burned with software encoder: {video_path.name}")
        return output_path
