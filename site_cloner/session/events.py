"""
Push-channel events and the in-process event bus.

Events are ephemeral: they go to live subscribers and into a bounded
per-session history that the UI can replay after reconnecting.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List

from ..utils.constants import DEFAULT_HISTORY_SIZE
from ..utils.log import get_logger


class EventType(str, Enum):
    STATUS_UPDATE = "status_update"
    PROGRESS_UPDATE = "progress_update"
    ASSET_FOUND = "asset_found"
    CONNECTION_STATUS = "connection_status"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_RECOVERY_AVAILABLE = "session_recovery_available"
    SESSION_RESUMED = "session_resumed"
    SESSION_RESUME_FAILED = "session_resume_failed"
    ERROR = "error"


@dataclass
class Event:
    type: EventType
    session_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type.value,
            'sessionId': self.session_id,
            'timestamp': self.timestamp,
        }
        data.update(self.payload)
        return data


Subscriber = Callable[[Event], None]


class EventBus:
    """
    Fan-out of session events to subscribers.

    ``publish`` is called from the state machine while it holds the store
    lock, so subscribers see events in state order. Subscribers must not
    block; a failing subscriber is logged and skipped.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self.history_size = history_size
        self.logger = get_logger("events")
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._history: Dict[str, Deque[Event]] = {}

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            Function that removes the subscriber again
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            history = self._history.get(event.session_id)
            if history is None:
                history = deque(maxlen=self.history_size)
                self._history[event.session_id] = history
            history.append(event)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Event subscriber failed on {event.type.value}: {e}")

    def history(self, session_id: str) -> List[Event]:
        with self._lock:
            return list(self._history.get(session_id, ()))

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._history.pop(session_id, None)
