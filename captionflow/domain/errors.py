"""
Error types for the caption pipeline.

All errors inherit from CaptionFlowError for easy catching.
"""

from typing import Optional


class CaptionFlowError(Exception):
    """Base exception for all pipeline failures."""
    pass


class ConfigError(CaptionFlowError):
    """Raised when the configuration file cannot be loaded or validated."""
    pass


class CommandError(CaptionFlowError):
    """Raised when an external program exits with a non-zero status."""

    def __init__(self, program: str, returncode: Optional[int], stderr: str = ""):
        self.program = program
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"command '{program}' failed: exit status {returncode}"
        if self.stderr:
            message = f"{message}\nstderr: {self.stderr}"
        super().__init__(message)


class CommandCancelled(CaptionFlowError):
    """Raised when cancellation fires while an external program is running."""

    def __init__(self, program: str):
        self.program = program
        super().__init__(f"command '{program}' cancelled")


class StageError(CaptionFlowError):
    """Wraps a failure with the name of the pipeline stage that produced it."""

    def __init__(self, stage: str, item: str, cause: BaseException):
        self.stage = stage
        self.item = item
        self.cause = cause
        super().__init__(f"{stage}: {cause}")

    @property
    def cancelled(self) -> bool:
        return isinstance(self.cause, (CommandCancelled, PipelineCancelled))


class PipelineCancelled(CaptionFlowError):
    """Raised between stages when cancellation has been requested."""

    def __init__(self, item: str):
        self.item = item
        super().__init__(f"pipeline cancelled before completion: {item}")


class AdmissionCancelled(CaptionFlowError):
    """Raised when an admission gate acquire is aborted by cancellation."""

    def __init__(self):
        super().__init__("admission cancelled")


class WatcherError(CaptionFlowError):
    """Fatal watcher condition: the filesystem subscription is gone."""
    pass


class SummarizerError(CaptionFlowError):
    """Raised when a summary cannot be generated."""
    pass
