# Overview: Append-only audit trail written inside the caller's transaction.

from __future__ import annotations

import json

from ..extensions import db
from ..models import AuditLog


def append_audit(
    *,
    entity: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    after: dict | None = None,
) -> AuditLog:
    """
    Append an audit row. No commit; the caller's transaction owns it.
    """
    row = AuditLog(
        actor_user_id=actor_user_id,
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        after=json.dumps(after, default=str, sort_keys=True) if after is not None else None,
    )
    db.session.add(row)
    db.session.flush()
    return row
