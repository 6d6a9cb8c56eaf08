from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field

class ItemStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

class Stage(str, Enum):
    EXTRACT = "extract"
    TRANSCRIBE = "transcribe"
    CONVERT = "convert"
    MUX = "mux"
    FINALIZE = "finalize"

class WorkItem(BaseModel):
    """One media file moving through the stage pipeline."""
    source_path: Path
    work_dir: Optional[Path] = None
    audio_path: Optional[Path] = None
    transcript_path: Optional[Path] = None
    subtitle_path: Optional[Path] = None
    output_path: Optional[Path] = None
    subtitle_output_path: Optional[Path] = None
    archived_path: Optional[Path] = None
    status: ItemStatus = ItemStatus.PENDING
    error_message: Optional[str] = None
    failed_stage: Optional[Stage] = None
    started_at: datetime = Field(default_factory=datetime.now)
    duration_seconds: Optional[float] = None

    @property
    def name(self) -> str:
        return self.source_path.name

class BatchSummary(BaseModel):
    succeeded: int = 0
    failed: int = 0
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed
