from __future__ import annotations
"""Ordering for ticket listings.

``?sort=-priority,created_at`` sorts by the listed keys (``-`` for
descending). Priority sorts by severity rather than alphabetically. Without a
``sort`` arg tickets come newest first; ``Ticket.id`` always closes the order
so pages do not overlap.
"""
from typing import Any, List, Optional, Tuple
from flask import abort
from sqlalchemy import case
from gymfix.models.ticket import Ticket

PRIORITY_RANK = case({p: i for i, p in enumerate(Ticket.PRIORITIES)}, value=Ticket.priority, else_=-1)

TICKET_SORT_KEYS = {
    'created_at': Ticket.created_at,
    'updated_at': Ticket.updated_at,
    'status': Ticket.status,
    'priority': PRIORITY_RANK,
    'id': Ticket.id,
}


def parse_ticket_sort(sort_expr: Optional[str]) -> List[Tuple[str, Any]]:
    """Return (key, order clause) pairs; unknown or repeated keys abort with 400."""
    keyed = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-')
        col = TICKET_SORT_KEYS.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        if key in dict(keyed):
            abort(400, description=f'Duplicate sort field {key}')
        keyed.append((key, col.desc() if desc else col.asc()))
    return keyed


def sort_tickets(query, sort_expr: Optional[str]):
    keyed = parse_ticket_sort(sort_expr)
    clauses = [c for _, c in keyed] or [Ticket.created_at.desc()]
    if 'id' not in dict(keyed):
        clauses.append(Ticket.id.desc())
    return query.order_by(*clauses)
