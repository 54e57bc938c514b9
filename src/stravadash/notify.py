"""
Outbound notification channel to the presentation layer.

Each event is delivered to every subscriber as (identifier, event, payload)
and the latest payload per identifier/event is kept so clients that poll
the HTTP API get the same data as push subscribers.
"""
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

STATS = "STATS"
ACTIVITIES = "ACTIVITIES"
CROWNS = "CROWNS"
RECORDS = "RECORDS"
SUMMARY = "SUMMARY"
PERIOD = "PERIOD"
ERROR = "ERROR"
WARNING = "WARNING"

EVENTS = (STATS, ACTIVITIES, CROWNS, RECORDS, SUMMARY, PERIOD, ERROR, WARNING)

Subscriber = Callable[[str, str, Any], None]


class Notifier:
    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._latest: Dict[str, Dict[str, Any]] = defaultdict(dict)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def send(self, identifier: str, event: str, payload: Any) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown notification {event!r}")
        logger.debug("Sending %s for %s", event, identifier)
        self._latest[identifier][event] = payload
        for callback in list(self._subscribers):
            try:
                callback(identifier, event, payload)
            except Exception:
                # A broken display client must not stop the sync cycle
                logger.exception("Subscriber failed handling %s", event)

    def error(self, identifier: str, message: str) -> None:
        self.send(identifier, ERROR, {"data": {"message": message}})

    def warning(self, identifier: str, message: str) -> None:
        self.send(identifier, WARNING, {"data": {"message": message}})

    def latest(self, identifier: str, event: Optional[str] = None) -> Any:
        """Latest payload for one event, or all events when `event` is None."""
        events = self._latest.get(identifier, {})
        if event is None:
            return dict(events)
        return events.get(event)

    def clear(self, identifier: str, event: str) -> None:
        self._latest.get(identifier, {}).pop(event, None)
