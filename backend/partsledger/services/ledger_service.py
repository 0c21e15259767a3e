# Overview: Append-only audit ledger for committed stock operations.

from __future__ import annotations

import json
from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
"""
Parts Ledger Audit Invariants (authoritative)

- Append-only audit log for committed ledger operations.
- No domain/business logic in the audit ledger itself.
- Events are staged inside the same DB transaction as the change they record,
  so an aborted operation leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    product_id: int | None = None,
    consumption_id: int | None = None,
    return_id: int | None = None,
    intake_id: int | None = None,
    actor: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    """
    Stage an append-only ledger event on the current session.

    - No domain logic here.
    - No commit: the caller's transaction decides whether the event exists.
    """
    ev = LedgerEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        product_id=product_id,
        consumption_id=consumption_id,
        return_id=return_id,
        intake_id=intake_id,
        actor=actor,
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    *,
    product_id: int | None = None,
    event_type: str | None = None,
    consumption_id: int | None = None,
    return_id: int | None = None,
    limit: int = 200,
) -> list[LedgerEvent]:
    q = db.session.query(LedgerEvent)
    if product_id is not None:
        q = q.filter(LedgerEvent.product_id == product_id)
    if event_type:
        q = q.filter(LedgerEvent.event_type == event_type)
    if consumption_id is not None:
        q = q.filter(LedgerEvent.consumption_id == consumption_id)
    if return_id is not None:
        q = q.filter(LedgerEvent.return_id == return_id)

    return q.order_by(LedgerEvent.occurred_at.desc(), LedgerEvent.id.desc()).limit(limit).all()
