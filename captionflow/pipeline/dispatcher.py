"""Dispatcher: admits work items, bounds concurrency, and drains on shutdown.

Each submitted path gets its own worker thread. The thread first waits on
the AdmissionGate, so callers (the watcher, the batch loop) never block on
pipeline work; queued items wait inside the gate instead. A path already
in flight is rejected rather than admitted twice.
"""

import concurrent.futures
import logging
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from captionflow.domain.errors import AdmissionCancelled, StageError
from captionflow.domain.events import ItemAdmitted, ItemCompleted, ItemFailed, ItemRejected, ItemStarted, RunFinished
from captionflow.domain.models import BatchSummary, ItemStatus, WorkItem
from captionflow.infrastructure.event_bus import EventBus
from captionflow.pipeline.admission import AdmissionGate
from captionflow.pipeline.stages import StagePipeline


class Dispatcher:
    """Launches one pipeline run per admitted item under a shared AdmissionGate.

    Args:
        pipeline: StagePipeline executed for every item.
        gate: AdmissionGate bounding concurrently running pipelines.
        event_bus: EventBus receiving item lifecycle events.
        cancel_event: The run's single cancellation signal. Once set, waiting
            acquires fail fast and in-flight items stop before their next stage.
    """

    def __init__(
        self,
        pipeline: StagePipeline,
        gate: AdmissionGate,
        event_bus: EventBus,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.pipeline = pipeline
        self.gate = gate
        self.event_bus = event_bus
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Condition()
        self._in_flight: Dict[Path, WorkItem] = {}
        self._outstanding = 0
        self.succeeded = 0
        self.failed = 0

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self._outstanding

    def in_flight_paths(self) -> List[Path]:
        with self._lock:
            return list(self._in_flight.keys())

    def cancel(self) -> None:
        """Fires the cancellation signal and wakes every waiting acquire."""
        self.logger.info("Cancellation requested - stopping admissions and interrupting active items...")
        self.cancel_event.set()
        self.gate.wake()

    def submit(self, path: Path) -> Optional["concurrent.futures.Future[WorkItem]"]:
        """Admits `path`; returns a future resolving to the finished WorkItem.

        Returns None when the same path is already in flight.
        """
        path = Path(path)
        key = path.resolve()
        item = WorkItem(source_path=path)
        with self._lock:
            if key in self._in_flight:
                duplicate = True
            else:
                duplicate = False
                self._in_flight[key] = item
                self._outstanding += 1
        if duplicate:
            self.logger.warning(f"Already in flight, ignoring duplicate: {path}")
            self.event_bus.publish(ItemRejected(path=path, reason="already in flight"))
            return None

        future: "concurrent.futures.Future[WorkItem]" = concurrent.futures.Future()
        self.event_bus.publish(ItemAdmitted(item=item))
        worker = threading.Thread(
            target=self._run_item,
            args=(item, key, future),
            name=f"item-{path.name}",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError:
            self._forget(key)
            raise
        return future

    def _run_item(self, item: WorkItem, key: Path, future: "concurrent.futures.Future[WorkItem]") -> None:
        try:
            try:
                self.gate.acquire(self.cancel_event)
            except AdmissionCancelled as e:
                item.status = ItemStatus.CANCELLED
                item.error_message = str(e)
                self.logger.info(f"[SKIP]  {item.name}: {e}")
                self._record(item)
                return

            try:
                self.event_bus.publish(ItemStarted(item=item))
                self.pipeline.process(item, self.cancel_event)
            except StageError as e:
                self.logger.error(f"[FAIL]  {item.name}: {e}")
            except Exception as e:
                item.status = ItemStatus.FAILED
                item.error_message = f"Exception: {e}"
                self.logger.exception(f"[FAIL]  {item.name}: unexpected error")
            finally:
                self.gate.release()
            self._record(item)
        finally:
            future.set_result(item)
            self._forget(key)

    def _record(self, item: WorkItem) -> None:
        ok = item.status == ItemStatus.COMPLETED
        with self._lock:
            if ok:
                self.succeeded += 1
            else:
                self.failed += 1
        if ok:
            self.logger.info(f"[DONE]  {item.name}")
            self.event_bus.publish(ItemCompleted(item=item))
        else:
            self.event_bus.publish(ItemFailed(item=item, error_message=item.error_message or "unknown error"))

    def _forget(self, key: Path) -> None:
        with self._lock:
            self._in_flight.pop(key, None)
            self._outstanding -= 1
            self._lock.notify_all()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Waits until no admitted item is outstanding; False on timeout."""
        with self._lock:
            return self._lock.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def run_batch(self, paths: Iterable[Path]) -> BatchSummary:
        """Processes a fixed list of paths and returns aggregated counts.

        Missing files and duplicates count as failures without being admitted.
        """
        start_time = time.monotonic()
        summary = BatchSummary()
        futures = []
        for path in paths:
            path = Path(path)
            if not path.is_file():
                self.logger.error(f"File not found, skipping: {path}")
                self.event_bus.publish(ItemRejected(path=path, reason="file not found"))
                summary.failed += 1
                continue
            future = self.submit(path)
            if future is None:
                summary.failed += 1
                continue
            futures.append(future)

        for future in concurrent.futures.as_completed(futures):
            item = future.result()
            if item.status == ItemStatus.COMPLETED:
                summary.succeeded += 1
            else:
                summary.failed += 1

        summary.duration_seconds = time.monotonic() - start_time
        self.logger.info(
            f"All processing completed: success={summary.succeeded}, failed={summary.failed}, "
            f"elapsed={summary.duration_seconds:.2f}s"
        )
        self.event_bus.publish(RunFinished(
            succeeded=summary.succeeded,
            failed=summary.failed,
            duration_seconds=summary.duration_seconds,
        ))
        return summary
