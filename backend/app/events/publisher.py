"""Event publisher - writes domain events to the transactional outbox."""
from datetime import datetime
import logging
from typing import Any, Dict, Optional, Protocol

from app.models.event_outbox import EventOutbox
from app.repositories.event_outbox_repository import EventOutboxRepository

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    event_type: str

    @property
    def aggregate_id(self) -> str:
        ...

    def to_dict(self) -> Dict[str, Any]:
        ...


class EventPublisher:
    """Publishes domain events into the outbox inside the caller's transaction."""

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(self, event: Event, idempotency_key: Optional[str] = None) -> EventOutbox:
        """
        Queue an event for delivery.

        The row is flushed but not committed, so it lands or disappears
        together with the state change that produced it.
        """
        payload = event.to_dict()

        # Convert datetime objects to ISO strings for JSON serialization
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()

        key = idempotency_key or f"{event.event_type}:{event.aggregate_id}"
        row = self.outbox_repo.enqueue(
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            payload=payload,
            idempotency_key=key,
        )
        logger.debug(f"Queued {event.event_type} for {event.aggregate_id}")
        return row
