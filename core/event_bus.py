"""
Event bus for ledger domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate;
the ledger transaction has already committed.
"""

import logging
from typing import Callable, Dict, List

from core.events import LedgerEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for ledger domain events.

    Subscribe by event class name (string), publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'InvoicePaid')
            callback: Function to call when event is published
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable):
        """Remove a previously subscribed callback. Unknown callbacks are ignored."""
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: LedgerEvent):
        """
        Publish an event to all subscribers of that type.

        Handlers are called synchronously in subscription order.
        Handler errors are logged but do not propagate.

        Args:
            event: LedgerEvent instance to publish
        """
        event_type = event.__class__.__name__

        if event_type not in self._subscribers:
            return

        for callback in list(self._subscribers[event_type]):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
