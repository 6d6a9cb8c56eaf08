"""Batch summarization of produced subtitle files.

Each `*.srt` in the output directory is summarized into `<dest>/<stem>.md`
and then moved into `<dest>` so later runs skip it.
"""

import logging
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import List
from captionflow.domain.errors import SummarizerError
from captionflow.domain.models import BatchSummary
from captionflow.summarizer.generator import TextGenerator, is_rate_limited
from captionflow.summarizer.keyring import KeyRing

SUMMARY_PROMPT = """You are an expert analyst of training videos. Using the subtitles below, write a DETAILED summary in {language}.

Requirements:
- Start with a one-sentence title describing the topic of the video
- List ALL main steps / topics in the order they appear
- Explain each step in detail, including notes, tips and important warnings
- Keep technical terms in English, in parentheses
- Use markdown: headings, bullet points, bold for key terms
- Finish with an "Important notes" section if anything needs emphasis

Video subtitles:
---
{transcript}
---"""


class Summarizer:
    def __init__(self, generator: TextGenerator, keys: KeyRing, language: str = "Vietnamese"):
        self.generator = generator
        self.keys = keys
        self.language = language
        self.logger = logging.getLogger(__name__)

    def summarize_text(self, transcript: str) -> str:
        """Generates a summary, rotating keys on rate limits.

        At most one attempt per key; other errors fail immediately.
        """
        prompt = SUMMARY_PROMPT.format(language=self.language, transcript=transcript)
        last_error = None
        for attempt in range(1, len(self.keys) + 1):
            key = self.keys.current()
            try:
                return self.generator.generate(prompt, key)
            except SummarizerError:
                raise
            except Exception as e:
                if not is_rate_limited(e):
                    raise SummarizerError(f"generate content: {e}") from e
                last_error = e
                self.logger.warning(
                    f"Key {self.keys.position + 1}/{len(self.keys)} rate limited "
                    f"(attempt {attempt}/{len(self.keys)}), rotating..."
                )
                self.keys.next()
        raise SummarizerError(f"all API keys exhausted: {last_error}") from last_error

    def discover(self, srt_dir: Path) -> List[Path]:
        return sorted(
            p for p in Path(srt_dir).iterdir()
            if p.is_file() and not p.name.startswith(".") and p.suffix.lower() == ".srt"
        )

    def summarize_all(self, srt_dir: Path, dest_dir: Path) -> BatchSummary:
        start_time = time.monotonic()
        summary = BatchSummary()
        srt_files = self.discover(srt_dir)
        if not srt_files:
            self.logger.info(f"No SRT files found in {srt_dir}")
            return summary

        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Found {len(srt_files)} SRT files to summarize")

        for i, srt_path in enumerate(srt_files, start=1):
            video_name = srt_path.stem
            self.logger.info(f"[{i}/{len(srt_files)}] Summarizing: {video_name}")
            try:
                transcript = srt_path.read_text(encoding="utf-8")
                text = self.summarize_text(transcript)
                md_path = dest_dir / f"{video_name}.md"
                md_path.write_text(
                    f"# {video_name}\n\n_{datetime.now().strftime('%Y-%m-%d %H:%M')}_\n\n{text.strip()}\n",
                    encoding="utf-8",
                )
            except (OSError, UnicodeDecodeError, SummarizerError) as e:
                self.logger.error(f"Failed to summarize {video_name}: {e}")
                summary.failed += 1
                continue

            try:
                shutil.move(str(srt_path), str(dest_dir / srt_path.name))
            except OSError as e:
                self.logger.warning(f"Failed to move SRT {srt_path}: {e}")

            self.logger.info(f"[DONE] {video_name} -> {md_path}")
            summary.succeeded += 1

        summary.duration_seconds = time.monotonic() - start_time
        self.logger.info(f"Summary complete: {summary.succeeded} success, {summary.failed} failed")
        return summary
