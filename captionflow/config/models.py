from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

DEFAULT_EXTENSIONS = [".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v", ".flv"]

class WhisperConfig(BaseModel):
    """whisper.cpp invocation settings."""
    model_path: str = Field(min_length=1)
    binary_path: str = Field(min_length=1)
    language: str = Field(min_length=1)
    prompt: str = ""
    threads: int = Field(default=8, gt=0)
    use_gpu: bool = True
    max_len: int = Field(default=0, ge=0)
    max_context: int = Field(default=0, ge=0)
    best_of: int = Field(default=5, ge=1)

class FFmpegConfig(BaseModel):
    binary: str = "ffmpeg"
    encoder: str = Field(min_length=1)  # hardware encoder, e.g. h264_videotoolbox
    video_bitrate: str = "5M"
    max_bitrate: Optional[str] = None
    bufsize: Optional[str] = None
    audio_codec: str = "aac"
    preset: str = "medium"
    software_encoder: str = "libx264"
    crf: int = Field(default=23, ge=0, le=51)
    subtitle_fallback: bool = True

class PathsConfig(BaseModel):
    input: str = Field(min_length=1)
    processing: str = Field(min_length=1)
    output: str = Field(min_length=1)
    archive: str = Field(default="data/archived", min_length=1)

class LoggingConfig(BaseModel):
    level: str = "info"
    file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().lower()
        allowed = {"debug", "info", "warn", "warning", "error"}
        if level not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Use one of {sorted(allowed)}")
        return level

class PerformanceConfig(BaseModel):
    max_concurrent: int = Field(default=2, gt=0)

class WatcherConfig(BaseModel):
    """Directory watching and stable-file detection."""
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    debounce_s: float = Field(default=0.5, ge=0.0)
    stable_checks: int = Field(default=0, ge=0)  # 0 = fixed debounce only
    poll_interval_s: float = Field(default=0.5, gt=0.0)

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v if ext]
        if not normalized:
            raise ValueError("At least one media extension is required")
        return normalized

class SummarizerConfig(BaseModel):
    model: str = "gemini-2.5-flash"
    api_keys_env: str = "GEMINI_API_KEYS"
    dest_subdir: str = "summaries"
    language: str = "Vietnamese"

class AppConfig(BaseModel):
    whisper: WhisperConfig
    ffmpeg: FFmpegConfig
    paths: PathsConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
