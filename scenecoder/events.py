"""Event system for scenecoder.

Progress and completion events for whatever renders progress. Handlers
are called on the emitting thread, which may be a scene worker.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Pipeline event types."""
    PROBE_COMPLETE = auto()
    SCENES_DETECTED = auto()
    SCENE_STARTED = auto()
    SCENE_COMPLETE = auto()
    SCENE_FAILED = auto()
    MERGE_COMPLETE = auto()
    RUN_COMPLETE = auto()


@dataclass
class Event:
    """Event data container.

    Attributes:
        type: Type of event
        timestamp: When the event occurred
        data: Event-specific data
        source: Component that generated the event
    """
    type: EventType
    timestamp: datetime
    data: Dict[str, Any]
    source: str


Handler = Callable[[Event], None]


class EventEmitter:
    """Dispatches events to registered handlers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[EventType, List[Handler]] = {}

    def on(self, event_type: EventType, handler: Handler) -> None:
        """Register an event handler.

        Args:
            event_type: Type of event to handle
            handler: Callback function for the event
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: EventType, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(event_type, None)

    def emit(self, event_type: EventType, data: Dict[str, Any], source: str) -> None:
        """Emit an event to registered handlers.

        A failing handler is logged and does not affect the pipeline or
        the remaining handlers.
        """
        event = Event(type=event_type, timestamp=datetime.now(), data=data, source=source)
        with self._lock:
            handlers = list(self._handlers.get(event_type, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler for %s failed", event_type.name)
