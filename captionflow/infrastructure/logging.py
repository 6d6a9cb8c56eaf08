import logging
from pathlib import Path

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

def setup_logging(log_file: Path, level: str = "info", console: bool = False) -> logging.Logger:
    """
    Setup logging configuration for the pipeline.

    Creates the log file's directory and writes all records there.
    Returns configured logger instance.

    Args:
        log_file: Path of the log file
        level: debug, info, warn/warning or error (unknown names mean info)
        console: If True, also echo records to stderr
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handlers = [logging.FileHandler(log_file)]
    if console:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=LEVELS.get(level.lower(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (level={level})")

    return logger
