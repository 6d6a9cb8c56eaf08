import subprocess
import logging
import threading
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union
from captionflow.domain.errors import CommandCancelled, CommandError

class Runner(Protocol):
    """Capability shared by every external tool invocation."""

    def run(
        self,
        program: str,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str: ...

class CommandRunner:
    """Runs external programs with captured output and cooperative cancellation."""

    def __init__(self, poll_interval: float = 0.1, terminate_timeout: float = 3.0):
        self.poll_interval = poll_interval
        self.terminate_timeout = terminate_timeout
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        program: str,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Executes `program args...` and returns its stdout.

        Raises CommandError on a non-zero exit (stderr attached) and
        CommandCancelled if `cancel_event` fires while the process runs; in
        that case the process is terminated, then killed if it ignores SIGTERM.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise CommandCancelled(program)

        cmd = [program, *[str(a) for a in args]]
        self.logger.debug(f"EXEC: {' '.join(cmd)}" + (f" (cwd={cwd})" if cwd else ""))

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",  # whisper.cpp can split multibyte characters across tokens
                cwd=str(cwd) if cwd else None,
            )
        except OSError as e:
            raise CommandError(program, None, str(e)) from e

        while True:
            try:
                stdout, stderr = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    self._terminate(process, program)
                    raise CommandCancelled(program)

        if process.returncode != 0:
            raise CommandError(program, process.returncode, stderr or "")
        return stdout or ""

    def _terminate(self, process: subprocess.Popen, program: str) -> None:
        self.logger.info(f"EXEC_INTERRUPTED: {program} (pid {process.pid})")
        process.terminate()
        try:
            process.communicate(timeout=self.terminate_timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
