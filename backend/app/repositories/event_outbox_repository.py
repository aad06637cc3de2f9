# backend/app/repositories/event_outbox_repository.py
"""
Repository for event outbox operations.

Implements transactional enqueue, pending fetch with locking, and status
updates required by an outbox relay.
"""

from __future__ import annotations

from datetime import timedelta
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from app.database.session_utils import get_dialect_name
from app.models.event_outbox import EventOutbox, EventOutboxStatus
from app.models.types import utcnow

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    # ------------------------------------------------------------------ enqueue
    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> EventOutbox:
        """
        Insert a new outbox row if one does not already exist for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        payload = payload or {}
        now = utcnow()
        key = idempotency_key or f"{event_type}:{aggregate_id}:{int(now.timestamp())}"

        event_id = str(ulid.ULID())
        values = dict(
            id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )

        inserted_id: Optional[str] = None

        if self._dialect == "postgresql":
            pg_stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(EventOutbox.id)
            )
            inserted_value = self.db.execute(pg_stmt).scalar_one_or_none()
            if inserted_value is not None:
                inserted_id = cast(str, inserted_value)
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
            result = self.db.execute(stmt)
            if getattr(result, "rowcount", 0):
                inserted_id = event_id

        if inserted_id:
            self.db.flush()
            row = cast(Optional[EventOutbox], self.db.get(EventOutbox, inserted_id))
            if row is None:
                raise RuntimeError("Inserted outbox row could not be reloaded")
            return row

        # Existing row - return without mutating attempt counters
        logger.debug(f"Outbox event {key} already queued")
        existing = cast(
            Optional[EventOutbox],
            self.db.execute(
                select(EventOutbox).where(EventOutbox.idempotency_key == key)
            ).scalar_one_or_none(),
        )
        if existing is None:
            raise RuntimeError("Outbox row not found after enqueue conflict")
        return existing

    # ---------------------------------------------------------------- fetchers
    def fetch_pending(self, limit: int = 200) -> list[EventOutbox]:
        """Return pending events eligible for delivery ordered by attempt time."""
        stmt: Select[Any] = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= utcnow())
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)

        return cast(list[EventOutbox], list(self.db.execute(stmt).scalars().all()))

    def list_for_aggregate(self, aggregate_id: str) -> list[EventOutbox]:
        """Every event recorded for one booking or waitlist entry, oldest first."""
        stmt = (
            select(EventOutbox)
            .where(EventOutbox.aggregate_id == aggregate_id)
            .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
        )
        return cast(list[EventOutbox], list(self.db.execute(stmt).scalars().all()))

    # ------------------------------------------------------------- state updates
    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        """Update row to SENT state."""
        row = self.db.get(EventOutbox, event_id)
        if row is None:
            return
        row.mark_sent(attempt_count)
        self.db.flush()

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Update row after delivery failure."""
        row = self.db.get(EventOutbox, event_id)
        if row is None:
            return
        if terminal:
            row.mark_failed(attempt_count, error)
        else:
            row.last_error = error[:1000] if error else None
            row.mark_pending(utcnow() + timedelta(seconds=max(backoff_seconds, 1)), attempt_count)
        self.db.flush()
