from __future__ import annotations
"""Audit logging decorator for administrative route handlers.

Usage:

@audit_log('GYM.MEMBER.ADD', entity='GymMember', payload_key='member', meta_keys=['user_id', 'gym_id', 'role'])
def add_member():
    ... return {'member': {...}}, 201

Parameters:
  action: required audit action code
  entity: optional entity label
  payload_key: when the JSON body wraps the resource (``{'member': {...}}``), the key to unwrap
  entity_id_key: key in the (unwrapped) payload whose value becomes entity_id
  entity_id_arg: path parameter to use for entity_id when the payload lacks entity_id_key
  meta_keys: keys projected from the payload into meta
  meta_builder: callable(payload, args, kwargs) -> dict, overrides meta_keys

Only successful responses (status < 400) are audited.
"""

from functools import wraps
from typing import Any, Callable, Iterable, Optional

from flask import current_app
from gymfix.services.audit import add_audit
from gymfix import get_db


def _split(rv: Any):
    """Return (payload, status) for the usual Flask return shapes."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    payload_key: Optional[str] = None,
    entity_id_key: Optional[str] = 'id',
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data, status = _split(rv)
            if status >= 400:
                return rv
            if isinstance(data, dict) and payload_key:
                data = data.get(payload_key) or {}
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            else:
                meta = None
            try:
                add_audit(action, entity, entity_id, meta)
                get_db().commit()
            except Exception:
                # the audited change is already committed; a lost audit row must not fail the response
                get_db().rollback()
                current_app.logger.exception('Failed to write audit entry %s', action)
            return rv
        return wrapper
    return outer
