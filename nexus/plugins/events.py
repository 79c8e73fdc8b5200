"""Plugin event channel - typed lifecycle notifications for subscribers.

Standard event types:
- plugin-loaded / plugin-error: one plugin directory loaded or failed
- plugins-loaded / plugins-error: a full load pass finished or failed
- plugin-installed / plugin-install-error / plugin-uninstalled / plugin-updated
- plugins-health: periodic health report
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from nexus.constants import EVENT_QUEUE_SIZE

logger = logging.getLogger(__name__)


class PluginEventType(str, Enum):
    PLUGIN_LOADED = "plugin-loaded"
    PLUGIN_ERROR = "plugin-error"
    PLUGINS_LOADED = "plugins-loaded"
    PLUGINS_ERROR = "plugins-error"
    PLUGIN_INSTALLED = "plugin-installed"
    PLUGIN_INSTALL_ERROR = "plugin-install-error"
    PLUGIN_UNINSTALLED = "plugin-uninstalled"
    PLUGIN_UPDATED = "plugin-updated"
    PLUGINS_HEALTH = "plugins-health"


EventCallback = Callable[["PluginEvent"], None]


@dataclass
class PluginEvent:
    """Represents one event on the channel."""

    type: PluginEventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class PluginEventChannel:
    """Bounded publish/subscribe channel for plugin events.

    Subscribers either register a callback (called synchronously on emit) or
    open an asyncio.Queue they poll. Queues are bounded; when a reader falls
    behind, its oldest event is dropped.
    """

    def __init__(self, queue_size: int = EVENT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._history: Deque[PluginEvent] = deque(maxlen=queue_size)
        self._queues: List[asyncio.Queue] = []
        self._callbacks: List[EventCallback] = []

    def emit(self, event_type: PluginEventType, payload: Optional[Dict[str, Any]] = None) -> PluginEvent:
        event = PluginEvent(type=event_type, payload=payload or {})
        self._history.append(event)

        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed on {event_type.value}")

        logger.debug(f"Event emitted: {event_type.value}")
        return event

    def subscribe(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def unsubscribe(self, callback: EventCallback) -> bool:
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            return True
        return False

    def open_queue(self) -> asyncio.Queue:
        """Open a bounded queue receiving every event emitted from now on."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queues.append(queue)
        return queue

    def close_queue(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def recent(self, event_type: Optional[PluginEventType] = None, limit: Optional[int] = None) -> List[PluginEvent]:
        """Most recent events, oldest first, optionally filtered by type."""
        events = [e for e in self._history if event_type is None or e.type == event_type]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events
