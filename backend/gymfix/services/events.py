from __future__ import annotations
from typing import Any, Dict, Optional
from gymfix.models.authz import iso
from gymfix.models.ticket import TicketEvent


def append_event(session, ticket_id: int, actor_user_id: int, event_type: str, data: Optional[Dict[str, Any]] = None) -> TicketEvent:
    """Add an event row to the ticket's append-only trail; the caller commits."""
    if event_type not in TicketEvent.ALL_TYPES:
        raise ValueError(f'unknown event type {event_type}')
    ev = TicketEvent(ticket_id=ticket_id, actor_user_id=actor_user_id, event_type=event_type, data=dict(data or {}))
    session.add(ev)
    return ev


def event_json(ev: TicketEvent):
    return {
        'id': ev.id,
        'ticket_id': ev.ticket_id,
        'actor_user_id': ev.actor_user_id,
        'event_type': ev.event_type,
        'data': ev.data or {},
        'created_at': iso(ev.created_at),
    }
