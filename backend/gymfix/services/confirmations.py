from __future__ import annotations
"""Dual confirmation: a resolved ticket closes once both the gym side and the
factory side have attested the repair with notes and a photo.

Each side gets one row (unique on ticket + side). The confirmation insert, the
counter bump and the conditional close run in one transaction:

    UPDATE tickets SET confirmation_count = confirmation_count + 1
     WHERE id = :id AND status = 'resolved'
    UPDATE tickets SET status = 'closed', closed_at = ..., closed_by = ...
     WHERE id = :id AND status = 'resolved' AND confirmation_count >= 2

The second statement matches in exactly one transaction, whichever side
confirms last, so the closure event and notifications are written once.
"""
from typing import Optional, Tuple

from flask import abort, current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from gymfix.constants.roles import SIDE_GYM, SIDE_FACTORY, SIDES, CONFIRMER_ROLES
from gymfix.models.authz import utcnow, iso
from gymfix.models.notification import Notification
from gymfix.models.ticket import Ticket, TicketEvent, TicketConfirmation
from gymfix.services.events import append_event
from gymfix.services.lifecycle import recipients
from gymfix.services.notifications import emit, publish_committed
from gymfix.services.policy import Actor, check

REQUIRED_CONFIRMATIONS = 2

_SIDE_CAPABILITY = {
    SIDE_GYM: 'TICKET.CONFIRM.GYM',
    SIDE_FACTORY: 'TICKET.CONFIRM.FACTORY',
}


def confirming_side(actor: Actor, requested: Optional[str] = None) -> str:
    """Resolve which side the actor confirms for, aborting 400/403 when it cannot be decided."""
    eligible = [side for side, cap in _SIDE_CAPABILITY.items() if check(actor.on_side(side), cap)]
    if requested:
        if requested not in SIDES:
            abort(400, description='side invalid')
        if requested not in eligible:
            abort(403, description=f'Forbidden - cannot confirm for the {requested} side')
        return requested
    if not eligible:
        abort(403, description='Forbidden - requires gym owner or factory member')
    if len(eligible) > 1:
        abort(400, description='side required')
    return eligible[0]


def submit_confirmation(session, ticket: Ticket, actor: Actor, notes: str, photo_url: str,
                        side: Optional[str] = None) -> Tuple[TicketConfirmation, bool]:
    """Record one side's confirmation; returns (confirmation, closed_by_this_call)."""
    side = confirming_side(actor, side)
    if ticket.status != Ticket.STATUS_RESOLVED:
        abort(409, description=f'Ticket is {ticket.status}; only resolved tickets can be confirmed')
    other = session.execute(
        select(TicketConfirmation).where(TicketConfirmation.ticket_id == ticket.id, TicketConfirmation.side != side)
    ).scalar_one_or_none()
    if other is not None and other.confirmed_by_user_id == actor.user_id:
        abort(403, description='The same user cannot confirm for both sides')

    conf = TicketConfirmation(
        ticket_id=ticket.id,
        side=side,
        confirmed_by_user_id=actor.user_id,
        confirmer_role=CONFIRMER_ROLES[(side, actor.role_on(side))],
        notes=notes,
        photo_url=photo_url,
    )
    session.add(conf)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        abort(409, description=f'The {side} side has already confirmed this ticket')

    bumped = session.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == Ticket.STATUS_RESOLVED)
        .values(confirmation_count=Ticket.confirmation_count + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    if bumped != 1:
        session.rollback()
        abort(409, description='Ticket is no longer awaiting confirmation')

    append_event(session, ticket.id, actor.user_id, TicketEvent.TYPE_CONFIRMATION, {
        'side': side,
        'confirmer_role': conf.confirmer_role,
        'notes': notes,
        'has_photo': True,
    })

    now = utcnow()
    closed = session.execute(
        update(Ticket)
        .where(
            Ticket.id == ticket.id,
            Ticket.status == Ticket.STATUS_RESOLVED,
            Ticket.confirmation_count >= REQUIRED_CONFIRMATIONS,
        )
        .values(status=Ticket.STATUS_CLOSED, closed_at=now, closed_by=actor.user_id, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    rows = []
    if closed:
        append_event(session, ticket.id, actor.user_id, TicketEvent.TYPE_STATUS_CHANGE, {
            'from': Ticket.STATUS_RESOLVED,
            'to': Ticket.STATUS_CLOSED,
            'note': 'Both parties confirmed the resolution',
        })
        audience = recipients(session, ticket, SIDE_GYM) | recipients(session, ticket, SIDE_FACTORY)
        rows = emit(session, audience, Notification.TYPE_TICKET_UPDATED,
                    {'ticket_id': ticket.id, 'action': 'close', 'status': Ticket.STATUS_CLOSED}, exclude=actor.user_id)
    else:
        other_side = SIDE_FACTORY if side == SIDE_GYM else SIDE_GYM
        rows = emit(session, recipients(session, ticket, other_side), Notification.TYPE_TICKET_UPDATED,
                    {'ticket_id': ticket.id, 'action': 'confirm', 'side': side, 'status': Ticket.STATUS_RESOLVED},
                    exclude=actor.user_id)
    session.commit()
    session.refresh(ticket)
    if closed:
        current_app.logger.info('Ticket %s closed after dual confirmation (last by user %s)', ticket.id, actor.user_id)
    publish_committed(rows)
    return conf, closed


def confirmation_json(c: TicketConfirmation):
    return {
        'id': c.id,
        'ticket_id': c.ticket_id,
        'side': c.side,
        'confirmed_by_user_id': c.confirmed_by_user_id,
        'confirmer_role': c.confirmer_role,
        'notes': c.notes,
        'photo_url': c.photo_url,
        'created_at': iso(c.created_at),
    }
