"""
In-process notification events.

Services publish lifecycle events here so UI collaborators can react
without polling. Delivery is best-effort: a failing subscriber is logged
and skipped, and never affects the operation that published the event.
"""

import threading
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List, Union

from ..constants import EventName
from .logger import get_logger

EventCallback = Callable[[str, Dict[str, Any]], None]


class EventBus:
    """Thread-safe publish/subscribe registry keyed by event name."""

    def __init__(self):
        self._subscribers: DefaultDict[str, List[EventCallback]] = defaultdict(list)
        self._lock = threading.Lock()
        self.logger = get_logger()

    def subscribe(self, event: Union[EventName, str], callback: EventCallback) -> None:
        name = event.value if isinstance(event, EventName) else event
        with self._lock:
            self._subscribers[name].append(callback)

    def unsubscribe(self, event: Union[EventName, str], callback: EventCallback) -> None:
        name = event.value if isinstance(event, EventName) else event
        with self._lock:
            if callback in self._subscribers.get(name, []):
                self._subscribers[name].remove(callback)

    def publish(self, event: Union[EventName, str], payload: Dict[str, Any]) -> int:
        """
        Deliver an event to its subscribers.

        Returns:
            Number of subscribers that handled the event without raising
        """
        name = event.value if isinstance(event, EventName) else event
        with self._lock:
            callbacks = list(self._subscribers.get(name, []))

        delivered = 0
        for callback in callbacks:
            try:
                callback(name, payload)
                delivered += 1
            except Exception as e:
                self.logger.warning(
                    f"Event subscriber failed for {name}",
                    extra={"event": name, "error_type": type(e).__name__, "error_details": str(e)},
                )
        return delivered
