import logging
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from bpff.domain.events import Event

logger = logging.getLogger(__name__)

class EventBus:
    """A simple synchronous event bus for decoupled communication.

    Events are delivered on the publishing thread. Worker threads publish
    progress, so the subscriber table is guarded by a lock and callbacks run
    on a snapshot of it.
    """

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
        """Publishes an event to all interested subscribers."""
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed while handling {type(event).__name__}")
