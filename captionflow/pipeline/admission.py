import threading
from contextlib import contextmanager
from typing import Iterator, Optional
from captionflow.domain.errors import AdmissionCancelled

DEFAULT_CAPACITY = 2

class AdmissionGate:
    """Counting limiter bounding how many work items run at once.

    Waiters poll the cancellation event every `poll_interval` seconds;
    `wake()` makes them re-check immediately.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, poll_interval: float = 0.1):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.poll_interval = poll_interval
        self._in_use = 0
        self._peak = 0
        self._cond = threading.Condition()

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    @property
    def peak(self) -> int:
        """Highest number of slots held at the same time since construction."""
        with self._cond:
            return self._peak

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> None:
        """Blocks until a slot is free; raises AdmissionCancelled if cancelled first."""
        with self._cond:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise AdmissionCancelled()
                if self._in_use < self.capacity:
                    self._in_use += 1
                    self._peak = max(self._peak, self._in_use)
                    return
                self._cond.wait(timeout=self.poll_interval if cancel_event is not None else None)

    def release(self) -> None:
        with self._cond:
            if self._in_use == 0:
                raise RuntimeError("AdmissionGate.release() without a matching acquire()")
            self._in_use -= 1
            self._cond.notify()

    def wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    @contextmanager
    def slot(self, cancel_event: Optional[threading.Event] = None) -> Iterator[None]:
        self.acquire(cancel_event)
        try:
            yield
        finally:
            self.release()
