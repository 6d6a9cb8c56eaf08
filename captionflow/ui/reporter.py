import threading
from typing import Optional
from rich.console import Console
from rich.text import Text
from captionflow.domain.events import (
    ItemCompleted, ItemFailed, ItemRejected, ItemStarted, RunFinished, WatcherStarted,
)
from captionflow.domain.models import ItemStatus
from captionflow.infrastructure.event_bus import EventBus

class ConsoleReporter:
    """Prints item lifecycle lines and run totals to the terminal."""

    def __init__(self, event_bus: EventBus, console: Optional[Console] = None):
        self.console = console or Console()
        self._lock = threading.Lock()
        event_bus.subscribe(ItemStarted, self._on_started)
        event_bus.subscribe(ItemCompleted, self._on_completed)
        event_bus.subscribe(ItemFailed, self._on_failed)
        event_bus.subscribe(ItemRejected, self._on_rejected)
        event_bus.subscribe(WatcherStarted, self._on_watcher_started)
        event_bus.subscribe(RunFinished, self._on_run_finished)

    def _line(self, tag: str, style: str, message: str):
        # Text.assemble keeps file names with brackets from being read as markup
        with self._lock:
            self.console.print(Text.assemble((f"{tag:<7}", style), " ", message))

    def _on_started(self, event: ItemStarted):
        self._line("[START]", "cyan", event.item.name)

    def _on_completed(self, event: ItemCompleted):
        elapsed = event.item.duration_seconds or 0.0
        self._line("[DONE]", "green", f"{event.item.name} ({elapsed:.1f}s)")

    def _on_failed(self, event: ItemFailed):
        if event.item.status == ItemStatus.CANCELLED:
            self._line("[SKIP]", "yellow", f"{event.item.name}: {event.error_message}")
        else:
            self._line("[FAIL]", "red", f"{event.item.name}: {event.error_message}")

    def _on_rejected(self, event: ItemRejected):
        self._line("[SKIP]", "yellow", f"{event.path.name}: {event.reason}")

    def _on_watcher_started(self, event: WatcherStarted):
        with self._lock:
            self.console.print(Text.assemble("Monitoring: ", (str(event.directory), "bold"), "  (Ctrl+C to stop)"))

    def _on_run_finished(self, event: RunFinished):
        style = "green" if event.failed == 0 else "yellow"
        with self._lock:
            self.console.print(Text(
                f"Success: {event.succeeded}, Failed: {event.failed}, Total time: {event.duration_seconds:.1f}s",
                style=style,
            ))
