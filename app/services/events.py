"""
In-process publish/subscribe for payment state changes.

Delivery is best-effort: a failing subscriber is logged and skipped, it never
breaks the publisher or the other subscribers. Subscribers must be idempotent,
the same change may be reported by both the poller and the webhook path.
"""
import logging
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List

from app.schemas.events import Event

logger = logging.getLogger(__name__)

Handler = Callable[[Event], None]

ALL_EVENTS = "*"


class EventBus:
    def __init__(self, history_size: int = 50):
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._history: Deque[Event] = deque(maxlen=history_size)

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register handler for event_type ("*" for everything). Returns an unsubscribe callable."""
        self._subscribers[event_type].append(handler)

        def unsubscribe():
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Event) -> int:
        """Deliver event to its subscribers. Returns how many handlers ran without raising."""
        self._history.append(event)
        delivered = 0
        handlers = list(self._subscribers.get(event.event_type, [])) + list(
            self._subscribers.get(ALL_EVENTS, [])
        )
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(f"Subscriber {handler!r} failed on {event.event_type}")
        return delivered

    def recent(self, limit: int = 20) -> List[Event]:
        return list(self._history)[-limit:]
