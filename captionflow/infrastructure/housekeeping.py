import logging
import shutil
from pathlib import Path

WORK_DIR_PREFIX = "item-"

class HousekeepingService:
    """Removes per-item working directories left behind by an interrupted run."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_stale_work_dirs(self, processing_root: Path) -> int:
        processing_root = Path(processing_root)
        if not processing_root.is_dir():
            return 0
        removed = 0
        for entry in processing_root.iterdir():
            if not entry.is_dir() or not entry.name.startswith(WORK_DIR_PREFIX):
                continue
            try:
                shutil.rmtree(entry)
                removed += 1
            except OSError as e:
                self.logger.warning(f"Failed to remove stale work dir {entry}: {e}")
        if removed:
            self.logger.info(f"Removed {removed} stale work dirs from {processing_root}")
        return removed
