"""
Event Bus - Central event dispatching system
Provides decoupled communication between the search workflow and its observers
"""
from typing import Callable, Dict, List
import logging
import threading

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe event bus for component communication"""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._lock = threading.RLock()

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribe to an event type"""
        with self._lock:
            if event_type not in self._subscribers:
                self._subscribers[event_type] = []
            if callback not in self._subscribers[event_type]:
                self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable):
        """Unsubscribe from an event type"""
        with self._lock:
            if event_type in self._subscribers:
                if callback in self._subscribers[event_type]:
                    self._subscribers[event_type].remove(callback)

    def emit(self, event_type: str, data=None):
        """Emit an event to all subscribers"""
        with self._lock:
            callbacks = list(self._subscribers.get(event_type, []))
        for callback in callbacks:
            try:
                callback(data)
            except Exception:
                logger.exception("Error in event handler for %s", event_type)

    def clear(self):
        """Clear all subscriptions"""
        with self._lock:
            self._subscribers.clear()


# Event types
class Events:
    # Search events
    SEARCH_STARTED = "search_started"
    SEARCH_COMPLETED = "search_completed"
    SEARCH_ERROR = "search_error"
    ENDPOINT_FAILED = "endpoint_failed"

    # Cache events
    CACHE_HIT = "cache_hit"
    CACHE_SAVED = "cache_saved"

    # Download events
    DOWNLOAD_QUEUED = "download_queued"
    DOWNLOAD_SKIPPED = "download_skipped"

    # Health events
    HEALTH_CHECK_COMPLETED = "health_check_completed"

    # Settings events
    SETTINGS_CHANGED = "settings_changed"
