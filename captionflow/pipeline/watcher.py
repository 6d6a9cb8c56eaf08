"""Directory watcher turning filesystem arrivals into dispatched work items.

States: IDLE -> DEBOUNCING -> DISPATCHING -> IDLE, and STOPPED once the
run loop returns. Each arrival settles (debounce, optional size polling) on
its own short-lived thread, so one slow file never delays the next. The
watcher only hands paths to the Dispatcher; admission waits happen in the
item's own worker thread.
"""

import logging
import os
import queue
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from captionflow.domain.errors import WatcherError
from captionflow.domain.events import WatcherStarted
from captionflow.infrastructure.event_bus import EventBus
from captionflow.infrastructure.file_scanner import is_media_file, normalize_extensions
from captionflow.pipeline.dispatcher import Dispatcher


class WatcherState(str, Enum):
    IDLE = "IDLE"
    DEBOUNCING = "DEBOUNCING"
    DISPATCHING = "DISPATCHING"
    STOPPED = "STOPPED"


class MediaEventHandler(FileSystemEventHandler):
    """Queues created (or moved-in) media files; everything else is ignored."""

    def __init__(self, extensions: Iterable[str], arrivals: "queue.Queue[Path]"):
        super().__init__()
        self.extensions = normalize_extensions(extensions)
        self.arrivals = arrivals
        self.logger = logging.getLogger(__name__)

    def on_created(self, event: FileSystemEvent):
        if event.is_directory:
            return
        self._offer(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        # Producers that write elsewhere and rename into the folder
        if event.is_directory:
            return
        self._offer(event.dest_path)

    def _offer(self, raw_path) -> None:
        path = Path(os.fsdecode(raw_path))
        if is_media_file(path, self.extensions):
            self.logger.info(f"New video detected: {path}")
            self.arrivals.put(path)
        else:
            self.logger.debug(f"Ignoring non-video file: {path}")


class DirectoryWatcher:
    """Watches one directory and dispatches each stable media file once.

    Args:
        directory: Directory to watch (not recursive).
        dispatcher: Dispatcher receiving the stable paths.
        extensions: Recognized media extensions.
        debounce_s: Fixed delay after the create notification.
        stable_checks: If > 0, also poll the size until it is unchanged for
            this many consecutive polls.
        poll_interval_s: Poll period for the size check and the event loop.
        observer_factory: Builds the watchdog observer.
    """

    def __init__(
        self,
        directory: Path,
        dispatcher: Dispatcher,
        extensions: Iterable[str],
        debounce_s: float = 0.5,
        stable_checks: int = 0,
        poll_interval_s: float = 0.5,
        event_bus: Optional[EventBus] = None,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.directory = Path(directory)
        self.dispatcher = dispatcher
        self.debounce_s = debounce_s
        self.stable_checks = stable_checks
        self.poll_interval_s = poll_interval_s
        self.event_bus = event_bus
        self.observer_factory = observer_factory
        self.logger = logging.getLogger(__name__)

        self._arrivals: "queue.Queue[Path]" = queue.Queue()
        self.handler = MediaEventHandler(extensions, self._arrivals)
        self._stop_event = threading.Event()
        self._settling: Dict[Path, threading.Thread] = {}
        self._settling_lock = threading.Lock()
        self.state = WatcherState.IDLE

    def stop(self) -> None:
        """Asks run() to return; it still drains in-flight items first."""
        self._stop_event.set()

    def _stopping(self, cancel_event: threading.Event) -> bool:
        return cancel_event.is_set() or self._stop_event.is_set()

    def run(self, cancel_event: threading.Event) -> None:
        """Blocks until cancelled or stopped, then drains the dispatcher.

        Raises WatcherError if the filesystem observer dies underneath us.
        """
        if not self.directory.is_dir():
            raise WatcherError(f"Watch directory does not exist: {self.directory}")

        observer = self.observer_factory()
        observer.schedule(self.handler, str(self.directory), recursive=False)
        observer.start()
        self.state = WatcherState.IDLE
        self.logger.info(
            f"File watcher started (max concurrent: {self.dispatcher.gate.capacity}). Monitoring: {self.directory}"
        )
        if self.event_bus is not None:
            self.event_bus.publish(WatcherStarted(directory=self.directory))

        try:
            while not self._stopping(cancel_event):
                if not observer.is_alive():
                    raise WatcherError("filesystem observer stopped unexpectedly")
                try:
                    path = self._arrivals.get(timeout=min(self.poll_interval_s, 0.2))
                except queue.Empty:
                    continue
                self._start_settling(path, cancel_event)
        finally:
            observer.stop()
            observer.join(timeout=5.0)
            with self._settling_lock:
                settling = list(self._settling.values())
            for thread in settling:
                thread.join()
            self.logger.info("Waiting for ongoing processing to complete...")
            self.dispatcher.drain()
            self.state = WatcherState.STOPPED
            self.logger.info("File watcher stopped")

    def _start_settling(self, path: Path, cancel_event: threading.Event) -> None:
        """Debounces `path` on its own thread so later arrivals are not held up."""
        with self._settling_lock:
            if path in self._settling:
                self.logger.debug(f"Already settling, ignoring repeat event: {path}")
                return
            thread = threading.Thread(
                target=self._settle,
                args=(path, cancel_event),
                name=f"settle-{path.name}",
                daemon=True,
            )
            self._settling[path] = thread
            self.state = WatcherState.DEBOUNCING
        try:
            thread.start()
        except RuntimeError as e:
            with self._settling_lock:
                self._settling.pop(path, None)
            self.logger.error(f"Failed to dispatch {path}: {e}")

    def _settle(self, path: Path, cancel_event: threading.Event) -> None:
        try:
            if self._wait_until_stable(path, cancel_event):
                with self._settling_lock:
                    self.state = WatcherState.DISPATCHING
                self.dispatcher.submit(path)
        except (OSError, RuntimeError) as e:
            # One unreadable arrival must not take the watcher down
            self.logger.error(f"Failed to dispatch {path}: {e}")
        finally:
            with self._settling_lock:
                self._settling.pop(path, None)
                self.state = WatcherState.DEBOUNCING if self._settling else WatcherState.IDLE

    def _wait_until_stable(self, path: Path, cancel_event: threading.Event) -> bool:
        """Debounces `path`; False if it vanished or shutdown began meanwhile."""
        if self.debounce_s and cancel_event.wait(self.debounce_s):
            return False
        if self._stop_event.is_set():
            return False

        last_size = -1
        stable = 0
        while True:
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                self.logger.debug(f"File vanished before dispatch: {path}")
                return False
            if self.stable_checks <= 0:
                return True
            if size == last_size:
                stable += 1
                if stable >= self.stable_checks:
                    return True
            else:
                stable = 0
            last_size = size
            if cancel_event.wait(self.poll_interval_s) or self._stop_event.is_set():
                return False
