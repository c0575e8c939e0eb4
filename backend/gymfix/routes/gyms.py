from __future__ import annotations
from typing import Optional
from flask import Blueprint, request, abort, g
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from gymfix.decorators.auth import require_auth
from gymfix.decorators.audit import audit_log
from gymfix.constants.roles import GYM_ROLES, GYM_OWNER, SIDE_GYM, SIDE_FACTORY
from gymfix.models.authz import User, Factory, Gym, GymMember, utcnow, iso
from gymfix.models.equipment import Equipment
from gymfix.models.notification import Notification
from gymfix.models.ticket import Ticket
from gymfix.services.notifications import emit, publish_committed
from gymfix.services.policy import actor_for_gym, require
from gymfix.services.users import resolve_user
from gymfix.utils.listing import apply_pagination, build_page_payload
from gymfix.utils.sorting import sort_tickets
from gymfix.utils.validation import require_fields, validate_choice, optional_int, optional_str, json_body
from gymfix.routes.equipment import equipment_json
from gymfix.routes.tickets import ticket_json
from gymfix import get_db

gyms_bp = Blueprint('gyms', __name__)


def gym_json(gym: Gym):
    return {
        'id': gym.id,
        'name': gym.name,
        'factory_id': gym.factory_id,
        'owner_user_id': gym.owner_user_id,
        'status': gym.status,
        'approved_by': gym.approved_by,
        'approved_at': iso(gym.approved_at),
        'created_at': iso(gym.created_at),
    }


def gym_member_json(m: GymMember, email: Optional[str] = None):
    return {
        'user_id': m.user_id,
        'gym_id': m.gym_id,
        'role': m.role,
        'email': email,
        'approved_at': iso(m.approved_at),
        'created_at': iso(m.created_at),
    }


def load_gym(session, gym_id) -> Gym:
    gym = session.execute(select(Gym).where(Gym.id == gym_id)).scalar_one_or_none()
    if not gym:
        abort(404, description='Gym not found')
    return gym


def _gym_from(source: dict) -> Gym:
    """Resolve ``gym_id`` from a JSON body or query args."""
    gym_id = optional_int(source.get('gym_id'), 'gym_id')
    if gym_id is None:
        abort(400, description='gym_id required')
    return load_gym(get_db(), gym_id)


def _load_gym_member(session, gym_id: int, user_id: int) -> GymMember:
    m = session.execute(
        select(GymMember).where(GymMember.gym_id == gym_id, GymMember.user_id == user_id)
    ).scalar_one_or_none()
    if not m:
        abort(404, description='Member not found')
    return m


@gyms_bp.post('/gyms')
@require_auth
@audit_log('GYM.REGISTER', entity='Gym', meta_keys=['factory_id', 'name'])
def register_gym():
    data = json_body()
    require_fields(data, 'name', 'factory_id')
    factory_id = optional_int(data['factory_id'], 'factory_id')
    session = get_db()
    if not session.get(Factory, factory_id):
        abort(404, description='Factory not found')
    gym = Gym(name=optional_str(data['name'], 'name'), factory_id=factory_id, owner_user_id=g.user.id, status=Gym.STATUS_PENDING)
    session.add(gym)
    session.flush()
    # the owner membership becomes active when the factory approves the gym
    session.add(GymMember(user_id=g.user.id, gym_id=gym.id, role=GYM_OWNER, approved_at=None))
    session.commit()
    return gym_json(gym), 201


@gyms_bp.get('/gyms/<int:gym_id>')
@require_auth
def get_gym(gym_id: int):
    session = get_db()
    gym = load_gym(session, gym_id)
    require(actor_for_gym(session, g.user.id, gym), 'GYM.READ')
    return gym_json(gym)


@gyms_bp.post('/gyms/<int:gym_id>/approve')
@require_auth
@audit_log('GYM.APPROVE', entity='Gym', meta_keys=['status'])
def approve_gym(gym_id: int):
    session = get_db()
    gym = load_gym(session, gym_id)
    require(actor_for_gym(session, g.user.id, gym).on_side(SIDE_FACTORY), 'FACTORY.GYMS.MANAGE')
    if gym.status == Gym.STATUS_ACTIVE:
        abort(409, description='Gym is already active')
    now = utcnow()
    gym.status = Gym.STATUS_ACTIVE
    gym.approved_by = g.user.id
    gym.approved_at = now
    owner = session.execute(
        select(GymMember).where(GymMember.gym_id == gym.id, GymMember.user_id == gym.owner_user_id)
    ).scalar_one_or_none()
    if owner is None:
        owner = GymMember(user_id=gym.owner_user_id, gym_id=gym.id, role=GYM_OWNER)
        session.add(owner)
    owner.role = GYM_OWNER
    if owner.approved_at is None:
        owner.approved_at = now
    rows = emit(session, [gym.owner_user_id], Notification.TYPE_GYM_APPROVED,
                {'gym_id': gym.id, 'name': gym.name}, exclude=g.user.id)
    session.commit()
    publish_committed(rows)
    return gym_json(gym)


@gyms_bp.post('/gyms/<int:gym_id>/suspend')
@require_auth
@audit_log('GYM.SUSPEND', entity='Gym', meta_keys=['status'])
def suspend_gym(gym_id: int):
    session = get_db()
    gym = load_gym(session, gym_id)
    require(actor_for_gym(session, g.user.id, gym).on_side(SIDE_FACTORY), 'FACTORY.GYMS.MANAGE')
    if gym.status != Gym.STATUS_ACTIVE:
        abort(409, description=f'Gym is {gym.status}; only active gyms can be suspended')
    gym.status = Gym.STATUS_SUSPENDED
    session.commit()
    return gym_json(gym)


@gyms_bp.get('/gyms/<int:gym_id>/equipment')
@require_auth
def list_gym_equipment(gym_id: int):
    session = get_db()
    gym = load_gym(session, gym_id)
    require(actor_for_gym(session, g.user.id, gym), 'GYM.READ')
    q = session.query(Equipment).filter(Equipment.gym_id == gym.id)
    status = request.args.get('status')
    if status:
        q = q.filter(Equipment.status == validate_choice(status, Equipment.ALL_STATUSES, 'status'))
    q = q.order_by(Equipment.name.asc(), Equipment.id.asc())
    paged_q, total, page, limit = apply_pagination(q)
    return build_page_payload('equipment', [equipment_json(e) for e in paged_q.all()], total, page, limit)


@gyms_bp.get('/gym/members/list')
@require_auth
def list_gym_members():
    session = get_db()
    gym = _gym_from(request.args)
    require(actor_for_gym(session, g.user.id, gym).on_side(SIDE_GYM), 'GYM.MEMBERS.READ')
    q = (
        session.query(GymMember, User.email)
        .join(User, User.id == GymMember.user_id)
        .filter(GymMember.gym_id == gym.id)
        .order_by(GymMember.created_at.desc(), GymMember.id.desc())
    )
    paged_q, total, page, limit = apply_pagination(q)
    rows = [gym_member_json(m, email) for m, email in paged_q.all()]
    return build_page_payload('members', rows, total, page, limit)


@gyms_bp.post('/gym/members')
@require_auth
@audit_log('GYM.MEMBER.ADD', entity='GymMember', payload_key='member', entity_id_key='user_id',
           meta_keys=['gym_id', 'role'])
def add_gym_member():
    session = get_db()
    data = json_body()
    gym = _gym_from(data)
    require(actor_for_gym(session, g.user.id, gym).on_side(SIDE_GYM), 'GYM.MEMBERS.MANAGE')
    return create_gym_member(session, gym, data)


def create_gym_member(session, gym: Gym, data: dict):
    """Add an approved member to ``gym``; the caller has already been authorized."""
    require_fields(data, 'role')
    role = validate_choice(data['role'], GYM_ROLES, 'role')
    user = resolve_user(session, data)
    exists = session.execute(
        select(GymMember).where(GymMember.gym_id == gym.id, GymMember.user_id == user.id)
    ).scalar_one_or_none()
    if exists:
        abort(409, description='User is already a member')
    m = GymMember(user_id=user.id, gym_id=gym.id, role=role, approved_at=utcnow())
    session.add(m)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        abort(409, description='User is already a member')
    rows = emit(session, [user.id], Notification.TYPE_MEMBER_APPROVED,
                {'gym_id': gym.id, 'role': role}, exclude=g.user.id)
    session.commit()
    publish_committed(rows)
    return {'member': gym_member_json(m, user.email)}, 201


@gyms_bp.patch('/gym/members')
@require_auth
@audit_log('GYM.MEMBER.ROLE', entity='GymMember', payload_key='member', entity_id_key='user_id',
           meta_keys=['gym_id', 'role'])
def update_gym_member():
    session = get_db()
    data = json_body()
    gym = _gym_from(data)
    require(actor_for_gym(session, g.user.id, gym).on_side(SIDE_GYM), 'GYM.MEMBERS.MANAGE')
    require_fields(data, 'user_id', 'role')
    role = validate_choice(data['role'], GYM_ROLES, 'role')
    m = _load_gym_member(session, gym.id, optional_int(data['user_id'], 'user_id'))
    if m.user_id == gym.owner_user_id and role != GYM_OWNER:
        abort(403, description='Cannot change the role of the gym owner')
    m.role = role
    session.commit()
    return {'member': gym_member_json(m)}


@gyms_bp.delete('/gym/members')
@require_auth
@audit_log('GYM.MEMBER.REMOVE', entity='GymMember', entity_id_key='user_id', meta_keys=['gym_id'])
def remove_gym_member():
    session = get_db()
    source = json_body() or request.args
    gym = _gym_from(source)
    require(actor_for_gym(session, g.user.id, gym).on_side(SIDE_GYM), 'GYM.MEMBERS.MANAGE')
    user_id = optional_int(source.get('user_id'), 'user_id')
    if user_id is None:
        abort(400, description='user_id required')
    return delete_gym_member(session, gym, user_id)


def delete_gym_member(session, gym: Gym, user_id: int):
    m = _load_gym_member(session, gym.id, user_id)
    if m.role == GYM_OWNER:
        abort(403, description='Cannot remove gym owner')
    session.delete(m)
    session.commit()
    return {'success': True, 'gym_id': gym.id, 'user_id': user_id}


@gyms_bp.get('/gym/tickets/list')
@require_auth
def list_gym_tickets():
    session = get_db()
    gym = _gym_from(request.args)
    require(actor_for_gym(session, g.user.id, gym), 'TICKET.READ')
    q = (
        session.query(Ticket, Equipment)
        .join(Equipment, Equipment.id == Ticket.equipment_id)
        .filter(Ticket.gym_id == gym.id)
    )
    status = request.args.get('status')
    if status:
        q = q.filter(Ticket.status == validate_choice(status, Ticket.ALL_STATUSES, 'status'))
    q = sort_tickets(q, request.args.get('sort'))
    paged_q, total, page, limit = apply_pagination(q)
    rows = []
    for t, e in paged_q.all():
        body = ticket_json(t)
        body['equipment'] = {'id': e.id, 'name': e.name, 'serial_number': e.serial_number}
        rows.append(body)
    return build_page_payload('tickets', rows, total, page, limit)
