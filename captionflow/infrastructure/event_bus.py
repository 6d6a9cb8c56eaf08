import threading
from typing import Type, Callable, List, Dict, Any, Optional
from captionflow.domain.events import Event

class EventBus:
    """A synchronous event bus; publish may be called from any worker thread."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: Event):
        """Publishes an event to subscribers of its type and of its base classes."""
        with self._lock:
            callbacks = [
                cb
                for event_type in type(event).__mro__
                for cb in self._subscribers.get(event_type, [])
            ]
        # Callbacks run outside the lock so a subscriber may publish in turn
        for callback in callbacks:
            callback(event)
