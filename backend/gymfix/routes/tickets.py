from __future__ import annotations
from typing import Optional
from flask import Blueprint, request, abort, g, current_app
from sqlalchemy import select
from gymfix.constants.roles import SIDE_GYM, SIDE_FACTORY
from gymfix.decorators.auth import require_auth
from gymfix.models.authz import Gym, iso
from gymfix.models.equipment import Equipment
from gymfix.models.notification import Notification
from gymfix.models.ticket import Ticket, TicketEvent, FactoryVisitRequest, TicketConfirmation
from gymfix.services.confirmations import REQUIRED_CONFIRMATIONS, submit_confirmation, confirmation_json
from gymfix.services.events import append_event, event_json
from gymfix.services.lifecycle import plan_transition, apply_transition, recipients, Rejection
from gymfix.services.notifications import emit, publish_committed
from gymfix.services.policy import Actor, actor_for_ticket, gym_role, require
from gymfix.utils.validation import require_fields, validate_choice, clean_text, optional_str, json_body
from gymfix import get_db

tickets_bp = Blueprint('tickets', __name__)


def ticket_json(t: Ticket):
    return {
        'id': t.id,
        'equipment_id': t.equipment_id,
        'gym_id': t.gym_id,
        'factory_id': t.factory_id,
        'status': t.status,
        'priority': t.priority,
        'description': t.description,
        'photo_url': t.photo_url,
        'created_by': t.created_by,
        'created_at': iso(t.created_at),
        'updated_at': iso(t.updated_at),
        'resolved_by': t.resolved_by,
        'resolved_at': iso(t.resolved_at),
        'resolution_notes': t.resolution_notes,
        'closed_by': t.closed_by,
        'closed_at': iso(t.closed_at),
        'confirmation_count': t.confirmation_count,
    }


def visit_json(v: FactoryVisitRequest):
    return {
        'ticket_id': v.ticket_id,
        'requested_by_gym_owner': v.requested_by_gym_owner,
        'gym_owner_user_id': v.gym_owner_user_id,
        'gym_owner_requested_at': iso(v.gym_owner_requested_at),
        'requested_by_factory_employee': v.requested_by_factory_employee,
        'factory_employee_user_id': v.factory_employee_user_id,
        'factory_employee_requested_at': iso(v.factory_employee_requested_at),
        'approval_status': v.approval_status,
        'approved_by': v.approved_by,
        'approved_at': iso(v.approved_at),
        'rejection_reason': v.rejection_reason,
        'scheduled_visit_at': iso(v.scheduled_visit_at),
        'technician_assigned_id': v.technician_assigned_id,
        'visit_notes': v.visit_notes,
        'created_at': iso(v.created_at),
        'updated_at': iso(v.updated_at),
    }


def _load_ticket(session, ticket_id: int) -> Ticket:
    t = session.get(Ticket, ticket_id)
    if not t:
        abort(404, description='Ticket not found')
    return t


def _readable_ticket(ticket_id: int):
    session = get_db()
    t = _load_ticket(session, ticket_id)
    actor = require(actor_for_ticket(session, g.user.id, t), 'TICKET.READ')
    return session, t, actor


@tickets_bp.post('')
@require_auth
def create_ticket():
    """Report a fault for the equipment identified by ``qr_code``."""
    data = json_body()
    require_fields(data, 'qr_code', 'description')
    session = get_db()
    qr_code = str(data['qr_code']).strip()
    e = session.execute(select(Equipment).where(Equipment.qr_code == qr_code)).scalar_one_or_none()
    if not e:
        abort(404, description='Equipment not found')
    if e.gym_id is None:
        abort(409, description='Equipment is not assigned to a gym')
    if e.status == Equipment.STATUS_RETIRED:
        abort(409, description='Equipment is retired')
    gym = session.get(Gym, e.gym_id)
    actor = Actor(user_id=g.user.id, gym_role=gym_role(session, g.user.id, gym.id))
    require(actor, 'TICKET.CREATE')
    if gym.status != Gym.STATUS_ACTIVE:
        abort(409, description=f'Gym is {gym.status}')
    priority = data.get('priority') or Ticket.DEFAULT_PRIORITY
    validate_choice(priority, Ticket.PRIORITIES, 'priority')
    t = Ticket(
        equipment_id=e.id,
        gym_id=gym.id,
        factory_id=e.factory_id,
        status=Ticket.STATUS_OPEN,
        priority=priority,
        description=str(data['description']).strip(),
        photo_url=clean_text(data.get('photo_url')),
        created_by=g.user.id,
        confirmation_count=0,
    )
    session.add(t)
    session.flush()
    append_event(session, t.id, g.user.id, TicketEvent.TYPE_STATUS_CHANGE, {'from': None, 'to': Ticket.STATUS_OPEN})
    if t.photo_url:
        append_event(session, t.id, g.user.id, TicketEvent.TYPE_ATTACHMENT, {'photo_url': t.photo_url})
    audience = recipients(session, t, SIDE_GYM) | recipients(session, t, SIDE_FACTORY)
    rows = emit(session, audience, Notification.TYPE_TICKET_CREATED,
                {'ticket_id': t.id, 'equipment_id': e.id, 'gym_id': gym.id, 'priority': priority}, exclude=g.user.id)
    session.commit()
    current_app.logger.info('Ticket %s opened for equipment %s by user %s', t.id, e.qr_code, g.user.id)
    publish_committed(rows)
    return ticket_json(t), 201


@tickets_bp.get('/<int:ticket_id>')
@require_auth
def get_ticket(ticket_id: int):
    session, t, _ = _readable_ticket(ticket_id)
    body = ticket_json(t)
    e = t.equipment
    body['equipment'] = {'id': e.id, 'name': e.name, 'qr_code': e.qr_code, 'serial_number': e.serial_number}
    visit = session.get(FactoryVisitRequest, t.id)
    body['visit_request'] = visit_json(visit) if visit else None
    return body


@tickets_bp.get('/<int:ticket_id>/events')
@require_auth
def list_events(ticket_id: int):
    session, t, _ = _readable_ticket(ticket_id)
    rows = session.execute(
        select(TicketEvent).where(TicketEvent.ticket_id == t.id).order_by(TicketEvent.created_at.asc(), TicketEvent.id.asc())
    ).scalars().all()
    return {'events': [event_json(ev) for ev in rows]}


@tickets_bp.post('/<int:ticket_id>/comments')
@require_auth
def add_comment(ticket_id: int):
    session = get_db()
    t = _load_ticket(session, ticket_id)
    actor = require(actor_for_ticket(session, g.user.id, t), 'TICKET.COMMENT')
    data = json_body()
    require_fields(data, 'body')
    if t.status in (Ticket.STATUS_CLOSED, Ticket.STATUS_REJECTED):
        abort(409, description=f'Ticket is {t.status}; no further changes allowed')
    ev = append_event(session, t.id, g.user.id, TicketEvent.TYPE_COMMENT, {'body': str(data['body']).strip()})
    audience = set()
    for side in (SIDE_GYM, SIDE_FACTORY):
        if side not in actor.sides or len(actor.sides) > 1:
            audience |= recipients(session, t, side)
    rows = emit(session, audience, Notification.TYPE_TICKET_UPDATED,
                {'ticket_id': t.id, 'action': 'comment', 'status': t.status}, exclude=g.user.id)
    session.commit()
    publish_committed(rows)
    return event_json(ev), 201


@tickets_bp.post('/<int:ticket_id>/actions/<action>')
@require_auth
def perform_action(ticket_id: int, action: str):
    session = get_db()
    t = _load_ticket(session, ticket_id)
    actor = actor_for_ticket(session, g.user.id, t)
    visit: Optional[FactoryVisitRequest] = session.get(FactoryVisitRequest, t.id)
    outcome = plan_transition(t.status, action, actor, json_body(), visit)
    if isinstance(outcome, Rejection):
        abort(outcome.status_code, description=outcome.reason)
    apply_transition(session, t, outcome, actor, visit)
    body = ticket_json(t)
    visit = session.get(FactoryVisitRequest, t.id)
    body['visit_request'] = visit_json(visit) if visit else None
    return body


@tickets_bp.get('/<int:ticket_id>/visit-request')
@require_auth
def get_visit_request(ticket_id: int):
    session, t, _ = _readable_ticket(ticket_id)
    visit = session.get(FactoryVisitRequest, t.id)
    if not visit:
        abort(404, description='No visit request for this ticket')
    return visit_json(visit)


@tickets_bp.get('/<int:ticket_id>/confirmations')
@require_auth
def list_confirmations(ticket_id: int):
    session, t, _ = _readable_ticket(ticket_id)
    rows = session.execute(
        select(TicketConfirmation).where(TicketConfirmation.ticket_id == t.id).order_by(TicketConfirmation.id.asc())
    ).scalars().all()
    return {
        'confirmations': [confirmation_json(c) for c in rows],
        'required': REQUIRED_CONFIRMATIONS,
        'status': t.status,
    }


@tickets_bp.post('/<int:ticket_id>/confirmations')
@require_auth
def confirm_resolution(ticket_id: int):
    session = get_db()
    t = _load_ticket(session, ticket_id)
    actor = require(actor_for_ticket(session, g.user.id, t), 'TICKET.READ')
    data = json_body()
    require_fields(data, 'notes', 'photo_url')
    conf, closed = submit_confirmation(
        session, t, actor,
        notes=str(data['notes']).strip(),
        photo_url=str(data['photo_url']).strip(),
        side=data.get('side'),
    )
    return {'confirmation': confirmation_json(conf), 'closed': closed, 'ticket': ticket_json(t)}, 201
