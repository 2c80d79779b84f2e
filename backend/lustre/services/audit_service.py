# Overview: Append-only sale audit trail.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import SaleAuditEvent
from ..time_utils import utcnow
"""
Sale audit invariants:

- Append-only: events are never updated or deleted.
- Events are written inside the same DB transaction as the change they
  record, so a rolled-back change leaves no audit row behind.
- occurred_at is business time and defaults to now.
"""


def append_sale_event(
    *,
    sale_id: int,
    event_type: str,
    actor_staff_id: int | None = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> SaleAuditEvent:
    """Append one audit event without committing."""
    ev = SaleAuditEvent(
        sale_id=sale_id,
        event_type=event_type,
        actor_staff_id=actor_staff_id,
        note=note[:255] if note else None,
        payload=payload,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_sale_events(sale_id: int) -> list[SaleAuditEvent]:
    return (
        db.session.query(SaleAuditEvent)
        .filter_by(sale_id=sale_id)
        .order_by(SaleAuditEvent.occurred_at.asc(), SaleAuditEvent.id.asc())
        .all()
    )
