from pathlib import Path
from typing import Iterable, List

def normalize_extensions(extensions: Iterable[str]) -> List[str]:
    return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]

def is_media_file(path: Path, extensions: Iterable[str]) -> bool:
    """True for non-hidden names carrying one of the recognized extensions."""
    if path.name.startswith("."):
        return False
    return path.suffix.lower() in normalize_extensions(extensions)

class FileScanner:
    """Lists media files directly inside one directory (no recursion)."""

    def __init__(self, extensions: List[str]):
        self.extensions = normalize_extensions(extensions)

    def scan(self, directory: Path) -> List[Path]:
        """Returns regular media files sorted by name; raises OSError if unreadable."""
        files = []
        for entry in sorted(Path(directory).iterdir(), key=lambda p: p.name):
            if not is_media_file(entry, self.extensions):
                continue
            if not entry.is_file():
                continue
            files.append(entry)
        return files
