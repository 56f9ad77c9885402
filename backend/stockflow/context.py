# Overview: Actor/tenant context consumed by the reconciliation core.

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import g, jsonify, request


@dataclass(frozen=True)
class ActorContext:
    """
    Who performs an operation and under which tenant.

    Established upstream by the authentication collaborator; the core only
    records it (audit, created_by) and scopes every query by tenant_id.
    """
    tenant_id: int
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None

    @property
    def label(self) -> Optional[str]:
        return self.actor_name or self.actor_id


def require_tenant(f):
    """
    Require tenant context on the request.

    The gateway that authenticates callers forwards:
    - X-Tenant-Id: integer tenant id (required)
    - X-Actor-Id / X-Actor-Name: who is acting (optional)

    Sets g.actor (ActorContext) and g.tenant_id. Returns 401 when the tenant
    header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_tenant = (request.headers.get("X-Tenant-Id") or "").strip()
        if not raw_tenant:
            return jsonify({"error": "Tenant context required"}), 401
        if not raw_tenant.isdigit():
            return jsonify({"error": "Invalid tenant context"}), 401

        g.actor = ActorContext(
            tenant_id=int(raw_tenant),
            actor_id=request.headers.get("X-Actor-Id") or None,
            actor_name=request.headers.get("X-Actor-Name") or None,
        )
        g.tenant_id = g.actor.tenant_id

        return f(*args, **kwargs)

    return decorated_function
