from __future__ import annotations
import secrets
import string
import time
from flask import Blueprint, request, abort, g
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from gymfix.decorators.auth import require_auth
from gymfix.decorators.audit import audit_log
from gymfix.models.authz import Gym, iso
from gymfix.models.equipment import Equipment
from gymfix.models.ticket import Ticket
from gymfix.services.policy import Actor, actor_for_factory, factory_role, gym_role, require
from gymfix.utils.listing import apply_pagination, build_page_payload
from gymfix.utils.validation import require_fields, validate_choice, optional_int, optional_str, clean_text, json_body
from gymfix.routes.tickets import ticket_json
from gymfix import get_db

equipment_bp = Blueprint('equipment', __name__)

_QR_ALPHABET = string.ascii_lowercase + string.digits
EDITABLE_FIELDS = ('name', 'serial_number', 'equipment_type', 'muscle_group', 'status', 'gym_id')


def generate_qr_code() -> str:
    suffix = ''.join(secrets.choice(_QR_ALPHABET) for _ in range(9))
    return f"EQ-{int(time.time() * 1000)}-{suffix}"


def equipment_json(e: Equipment):
    return {
        'id': e.id,
        'factory_id': e.factory_id,
        'gym_id': e.gym_id,
        'name': e.name,
        'serial_number': e.serial_number,
        'qr_code': e.qr_code,
        'equipment_type': e.equipment_type,
        'muscle_group': e.muscle_group,
        'status': e.status,
        'created_by': e.created_by,
        'created_at': iso(e.created_at),
        'updated_at': iso(e.updated_at),
    }


def actor_for_equipment(session, user_id: int, e: Equipment) -> Actor:
    return Actor(
        user_id=user_id,
        gym_role=gym_role(session, user_id, e.gym_id) if e.gym_id else None,
        factory_role=factory_role(session, user_id, e.factory_id),
    )


def _load_equipment(session, equipment_id: int) -> Equipment:
    e = session.get(Equipment, equipment_id)
    if not e:
        abort(404, description='Equipment not found')
    return e


def _check_gym(session, gym_id, factory_id: int):
    if gym_id is None:
        return None
    gym = session.get(Gym, gym_id)
    if not gym:
        abort(404, description='Gym not found')
    if gym.factory_id != factory_id:
        abort(400, description='gym belongs to another factory')
    return gym


def _choices(data: dict, target: dict):
    if 'equipment_type' in data:
        target['equipment_type'] = validate_choice(data['equipment_type'], Equipment.TYPES, 'equipment_type')
    if 'muscle_group' in data:
        target['muscle_group'] = validate_choice(data['muscle_group'], Equipment.MUSCLE_GROUPS, 'muscle_group')
    if 'status' in data:
        target['status'] = validate_choice(data['status'], Equipment.ALL_STATUSES, 'status')


@equipment_bp.post('')
@require_auth
@audit_log('EQUIPMENT.CREATE', entity='Equipment', meta_keys=['factory_id', 'gym_id', 'qr_code'])
def create_equipment():
    data = json_body()
    require_fields(data, 'factory_id', 'name', 'serial_number')
    factory_id = optional_int(data['factory_id'], 'factory_id')
    session = get_db()
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.EQUIPMENT.MANAGE')
    gym_id = optional_int(data.get('gym_id'), 'gym_id')
    _check_gym(session, gym_id, factory_id)
    fields = {}
    _choices(data, fields)
    qr_code = clean_text(data.get('qr_code')) or generate_qr_code()
    if session.execute(select(Equipment).where(Equipment.qr_code == qr_code)).scalar_one_or_none():
        abort(409, description='qr_code already in use')
    e = Equipment(
        factory_id=factory_id,
        gym_id=gym_id,
        name=optional_str(data['name'], 'name'),
        serial_number=str(data['serial_number']).strip(),
        qr_code=qr_code,
        created_by=g.user.id,
        **fields,
    )
    session.add(e)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        abort(409, description='qr_code already in use')
    return equipment_json(e), 201


@equipment_bp.get('/<int:equipment_id>')
@require_auth
def get_equipment(equipment_id: int):
    session = get_db()
    e = _load_equipment(session, equipment_id)
    require(actor_for_equipment(session, g.user.id, e), 'GYM.READ')
    return equipment_json(e)


@equipment_bp.patch('/<int:equipment_id>')
@require_auth
@audit_log('EQUIPMENT.UPDATE', entity='Equipment', meta_builder=lambda data, args, kwargs: {
    'fields': sorted(k for k in json_body() if k in EDITABLE_FIELDS)
})
def update_equipment(equipment_id: int):
    session = get_db()
    e = _load_equipment(session, equipment_id)
    require(actor_for_factory(session, g.user.id, e.factory_id), 'FACTORY.EQUIPMENT.MANAGE')
    data = json_body()
    changes = {}
    for key in ('name', 'serial_number'):
        if key in data:
            value = clean_text(data[key])
            if value is None:
                abort(400, description=f'{key} required')
            changes[key] = value
    _choices(data, changes)
    if 'gym_id' in data:
        gym_id = optional_int(data['gym_id'], 'gym_id')
        _check_gym(session, gym_id, e.factory_id)
        changes['gym_id'] = gym_id
    if not changes:
        abort(400, description='No valid fields to update')
    for key, value in changes.items():
        setattr(e, key, value)
    session.commit()
    return equipment_json(e)


@equipment_bp.get('/<int:equipment_id>/history')
@require_auth
def equipment_history(equipment_id: int):
    """Maintenance history: every ticket raised for the equipment, newest first."""
    session = get_db()
    e = _load_equipment(session, equipment_id)
    require(actor_for_equipment(session, g.user.id, e), 'TICKET.READ')
    q = (
        session.query(Ticket)
        .filter(Ticket.equipment_id == e.id)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
    )
    paged_q, total, page, limit = apply_pagination(q)
    return build_page_payload('tickets', [ticket_json(t) for t in paged_q.all()], total, page, limit)


@equipment_bp.get('/by-qr/<path:qr_code>')
@require_auth
def equipment_by_qr(qr_code: str):
    session = get_db()
    e = session.execute(select(Equipment).where(Equipment.qr_code == qr_code.strip())).scalar_one_or_none()
    if not e:
        abort(404, description='Equipment not found')
    require(actor_for_equipment(session, g.user.id, e), 'GYM.READ')
    return equipment_json(e)
