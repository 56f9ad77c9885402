# Overview: Append-only audit trail for stock reconciliation.

from __future__ import annotations

from typing import Any, Optional

from ..context import ActorContext
from ..extensions import db
from ..models import AuditEvent
"""
Audit invariants

- Append-only: no updates or deletes of existing events.
- No business logic here.
- Events are written inside the same DB transaction as the change they record.
"""


def append_audit_event(
    *,
    tenant_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    actor: Optional[ActorContext] = None,
    payload: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    ev = AuditEvent(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor.actor_id if actor else None,
        actor_name=actor.actor_name if actor else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_audit_events(*, tenant_id: int, entity_type: str | None = None, entity_id: int | None = None, limit: int = 200):
    q = db.session.query(AuditEvent).filter_by(tenant_id=tenant_id)
    if entity_type is not None:
        q = q.filter_by(entity_type=entity_type)
    if entity_id is not None:
        q = q.filter_by(entity_id=entity_id)
    return q.order_by(AuditEvent.id.desc()).limit(limit).all()
