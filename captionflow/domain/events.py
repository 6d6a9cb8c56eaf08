"""Domain events for the caption pipeline.

Events flow through the EventBus, decoupling the dispatcher and stage
pipeline from console reporting.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import Stage, WorkItem


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class ItemEvent(Event):
    """Base class for events related to a specific work item."""

    item: WorkItem


class ItemAdmitted(ItemEvent):
    """Emitted when a path is accepted by the dispatcher (before the gate)."""

    pass


class ItemStarted(ItemEvent):
    """Emitted once the item holds an admission slot and its pipeline begins."""

    pass


class StageCompleted(ItemEvent):
    """Emitted after a stage produced its artifact."""

    stage: Stage
    artifact: Optional[Path] = None


class ItemCompleted(ItemEvent):
    pass


class ItemFailed(ItemEvent):
    """Emitted when an item's pipeline fails, is cancelled, or never got a slot."""

    error_message: str


class ItemRejected(Event):
    """Emitted when a path is not admitted at all."""

    path: Path
    reason: str


class WatcherStarted(Event):
    directory: Path


class RunFinished(Event):
    succeeded: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
