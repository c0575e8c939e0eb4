from __future__ import annotations
from typing import Any, Dict, Optional
from flask import g
from gymfix import get_db
from gymfix.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[Any] = None, meta: Optional[Dict[str, Any]] = None):
    """Persist an audit log entry within the current DB session.

    Parameters:
      action: short action code e.g. GYM.MEMBER.ADD, FACTORY.MEMBER.REMOVE, GYM.APPROVE
      entity: optional entity name (GymMember, Gym, Equipment, ...)
      entity_id: optional primary key (stored as string)
      meta: additional JSON-safe dictionary (shallow copied)
    """
    session = get_db()
    user = getattr(g, 'user', None)
    log = AuditLog(
        actor_user_id=user.id if user is not None else 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
