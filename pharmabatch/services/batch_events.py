"""
Batch Event Emission

The engine emits structured events with a stable parameter set; rendering
and delivery (email, SMS, dashboards) belong to subscribers. With no
subscribers attached, events are only logged.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class BatchEventType(str, Enum):
    """Event types emitted by the batch engine."""
    BATCH_CREATED = "BATCH_CREATED"
    BATCH_DEPLETED = "BATCH_DEPLETED"
    STOCK_LOW = "STOCK_LOW"
    EXPIRY_IMMINENT = "EXPIRY_IMMINENT"
    BATCH_EXPIRED = "BATCH_EXPIRED"
    QUARANTINE_CREATED = "QUARANTINE_CREATED"
    QUARANTINE_CLOSED = "QUARANTINE_CLOSED"


@dataclass
class BatchEvent:
    """
    One emitted event.

    params always carries: product_name, batch_number, quantity,
    days_until_expiry, reason (any of them may be None).
    action_data carries ids a subscriber can link back with.
    """
    event_type: BatchEventType
    params: Dict[str, Any]
    action_data: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def build_params(
    product_name: Optional[str] = None,
    batch_number: Optional[str] = None,
    quantity: Optional[int] = None,
    days_until_expiry: Optional[int] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "product_name": product_name,
        "batch_number": batch_number,
        "quantity": quantity,
        "days_until_expiry": days_until_expiry,
        "reason": reason,
    }


Subscriber = Callable[[BatchEvent], None]


class BatchEventPublisher:
    """Synchronous fan-out to registered subscribers."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, event: BatchEvent) -> None:
        logger.info(
            f"Batch event {event.event_type.value}: "
            f"batch={event.params.get('batch_number')} qty={event.params.get('quantity')}"
        )
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                # A failing subscriber must not undo stock bookkeeping
                logger.exception(f"Event subscriber failed for {event.event_type.value}: {e}")

    def emit(
        self,
        event_type: BatchEventType,
        action_data: Optional[Dict[str, Any]] = None,
        **params,
    ) -> BatchEvent:
        event = BatchEvent(
            event_type=event_type,
            params=build_params(**params),
            action_data=action_data or {},
        )
        self.publish(event)
        return event


class EventRecorder:
    """Subscriber that keeps every event in memory (dashboards, tests)."""

    def __init__(self):
        self.events: List[BatchEvent] = []

    def __call__(self, event: BatchEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: BatchEventType) -> List[BatchEvent]:
        return [e for e in self.events if e.event_type == event_type]


# Process-wide publisher used when a service is built without one
default_publisher = BatchEventPublisher()
