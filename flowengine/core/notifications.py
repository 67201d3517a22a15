"""Notification channels used by suspend-and-wait steps.

The engine treats notifications as opaque: a channel receives a dict and does
whatever delivery it likes (log it, queue it for a UI, post it somewhere).
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .logging import get_logger

logger = get_logger(__name__)


class NotificationChannel(ABC):
    """Receives "waiting for input" style notifications."""

    @abstractmethod
    def notify(self, execution_id: str, node_id: str, event_type: Optional[str],
               payload: Dict[str, Any]) -> None:
        """Deliver a notification. Failures must not abort the step."""


class LoggingNotificationChannel(NotificationChannel):
    """Default channel that records notifications in the log."""

    def notify(self, execution_id, node_id, event_type, payload):
        logger.info(
            f"Execution {execution_id} node {node_id} waiting for '{event_type}': {payload}"
        )


class InMemoryNotificationChannel(NotificationChannel):
    """Keeps notifications in a bounded in-process queue for polling consumers."""

    def __init__(self, max_messages: int = 1000):
        self._messages: List[Dict[str, Any]] = []
        self._max_messages = max_messages
        self._lock = threading.Lock()

    def notify(self, execution_id, node_id, event_type, payload):
        message = {
            "execution_id": execution_id,
            "node_id": node_id,
            "event_type": event_type,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._messages.append(message)
            if len(self._messages) > self._max_messages:
                self._messages = self._messages[-self._max_messages:]

    def messages(self, execution_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            if execution_id is None:
                return list(self._messages)
            return [m for m in self._messages if m["execution_id"] == execution_id]

    def drain(self) -> List[Dict[str, Any]]:
        with self._lock:
            messages, self._messages = self._messages, []
        return messages
