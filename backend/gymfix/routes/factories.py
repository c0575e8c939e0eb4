from __future__ import annotations
from typing import Optional
from flask import Blueprint, request, abort, g
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from gymfix.decorators.auth import require_auth
from gymfix.decorators.audit import audit_log
from gymfix.constants.roles import FACTORY_ROLES, FACTORY_OWNER
from gymfix.models.authz import User, Factory, FactoryMember, Gym, GymMember, utcnow, iso
from gymfix.models.notification import Notification
from gymfix.models.equipment import Equipment
from gymfix.models.ticket import Ticket
from gymfix.services.notifications import emit, publish_committed
from gymfix.services.policy import Actor, actor_for_factory, check, require
from gymfix.services.users import resolve_user
from gymfix.utils.listing import apply_pagination, build_page_payload
from gymfix.utils.sorting import sort_tickets
from gymfix.utils.validation import require_fields, validate_choice, optional_int, optional_str, json_body
from gymfix.routes.equipment import equipment_json
from gymfix.routes.gyms import gym_json, load_gym, create_gym_member, delete_gym_member
from gymfix.routes.tickets import ticket_json
from gymfix import get_db

factories_bp = Blueprint('factories', __name__)

SEARCH_MIN_CHARS = 2
SEARCH_MAX_RESULTS = 10


def factory_json(f: Factory):
    return {'id': f.id, 'name': f.name, 'owner_user_id': f.owner_user_id, 'created_at': iso(f.created_at)}


def member_json(m: FactoryMember, email: Optional[str] = None):
    return {
        'user_id': m.user_id,
        'factory_id': m.factory_id,
        'role': m.role,
        'email': email,
        'approved_at': iso(m.approved_at),
        'created_at': iso(m.created_at),
    }


def _load_factory(session, factory_id: int) -> Factory:
    f = session.execute(select(Factory).where(Factory.id == factory_id)).scalar_one_or_none()
    if not f:
        abort(404, description='Factory not found')
    return f


def _load_member(session, factory_id: int, user_id: int) -> FactoryMember:
    m = session.execute(
        select(FactoryMember).where(FactoryMember.factory_id == factory_id, FactoryMember.user_id == user_id)
    ).scalar_one_or_none()
    if not m:
        abort(404, description='Member not found')
    return m


@factories_bp.post('/factories')
@require_auth
@audit_log('FACTORY.CREATE', entity='Factory', meta_keys=['name'])
def create_factory():
    data = json_body()
    require_fields(data, 'name')
    session = get_db()
    f = Factory(name=optional_str(data['name'], 'name'), owner_user_id=g.user.id)
    session.add(f)
    session.flush()
    session.add(FactoryMember(user_id=g.user.id, factory_id=f.id, role=FACTORY_OWNER, approved_at=utcnow()))
    session.commit()
    return factory_json(f), 201


@factories_bp.get('/factories/<int:factory_id>')
@require_auth
def get_factory(factory_id: int):
    session = get_db()
    f = _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, f.id), 'FACTORY.READ')
    return factory_json(f)


@factories_bp.get('/factories/<int:factory_id>/members')
@require_auth
def list_members(factory_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.MEMBERS.READ')
    q = (
        session.query(FactoryMember, User.email)
        .join(User, User.id == FactoryMember.user_id)
        .filter(FactoryMember.factory_id == factory_id)
        .order_by(FactoryMember.created_at.desc(), FactoryMember.id.desc())
    )
    paged_q, total, page, limit = apply_pagination(q)
    rows = [member_json(m, email) for m, email in paged_q.all()]
    return build_page_payload('members', rows, total, page, limit)


@factories_bp.post('/factories/<int:factory_id>/members')
@require_auth
@audit_log('FACTORY.MEMBER.ADD', entity='FactoryMember', payload_key='member', entity_id_key='user_id',
           meta_keys=['factory_id', 'role'])
def add_member(factory_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.MEMBERS.MANAGE')
    data = json_body()
    require_fields(data, 'role')
    role = validate_choice(data['role'], FACTORY_ROLES, 'role')
    user = resolve_user(session, data)
    exists = session.execute(
        select(FactoryMember).where(FactoryMember.factory_id == factory_id, FactoryMember.user_id == user.id)
    ).scalar_one_or_none()
    if exists:
        abort(409, description='User is already a member')
    m = FactoryMember(user_id=user.id, factory_id=factory_id, role=role, approved_at=utcnow())
    session.add(m)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        abort(409, description='User is already a member')
    rows = emit(session, [user.id], Notification.TYPE_MEMBER_APPROVED,
                {'factory_id': factory_id, 'role': role}, exclude=g.user.id)
    session.commit()
    publish_committed(rows)
    return {'member': member_json(m, user.email)}, 201


@factories_bp.patch('/factories/<int:factory_id>/members/<int:user_id>')
@require_auth
@audit_log('FACTORY.MEMBER.ROLE', entity='FactoryMember', payload_key='member', entity_id_key='user_id',
           meta_keys=['factory_id', 'role'])
def update_member(factory_id: int, user_id: int):
    session = get_db()
    f = _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.MEMBERS.MANAGE')
    data = json_body()
    require_fields(data, 'role')
    role = validate_choice(data['role'], FACTORY_ROLES, 'role')
    m = _load_member(session, factory_id, user_id)
    if user_id == f.owner_user_id and role != FACTORY_OWNER:
        abort(403, description='Cannot change the role of the factory owner')
    m.role = role
    session.commit()
    return {'member': member_json(m)}


@factories_bp.delete('/factories/<int:factory_id>/members/<int:user_id>')
@require_auth
@audit_log('FACTORY.MEMBER.REMOVE', entity='FactoryMember', entity_id_arg='user_id')
def remove_member(factory_id: int, user_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.MEMBERS.MANAGE')
    m = _load_member(session, factory_id, user_id)
    if m.role == FACTORY_OWNER:
        abort(403, description='Cannot remove factory owner')
    session.delete(m)
    session.commit()
    return {'success': True}


@factories_bp.get('/factories/<int:factory_id>/gyms')
@require_auth
def list_factory_gyms(factory_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.READ')
    q = session.query(Gym).filter(Gym.factory_id == factory_id)
    status = request.args.get('status')
    if status:
        q = q.filter(Gym.status == validate_choice(status, Gym.ALL_STATUSES, 'status'))
    q = q.order_by(Gym.created_at.desc(), Gym.id.desc())
    paged_q, total, page, limit = apply_pagination(q)
    return build_page_payload('gyms', [gym_json(x) for x in paged_q.all()], total, page, limit)


@factories_bp.get('/factories/<int:factory_id>/tickets')
@require_auth
def list_factory_tickets(factory_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'TICKET.READ')
    q = session.query(Ticket).filter(Ticket.factory_id == factory_id)
    status = request.args.get('status')
    priority = request.args.get('priority')
    gym_id = optional_int(request.args.get('gym_id'), 'gym_id')
    if status:
        q = q.filter(Ticket.status == validate_choice(status, Ticket.ALL_STATUSES, 'status'))
    if priority:
        q = q.filter(Ticket.priority == validate_choice(priority, Ticket.PRIORITIES, 'priority'))
    if gym_id is not None:
        q = q.filter(Ticket.gym_id == gym_id)
    q = sort_tickets(q, request.args.get('sort'))
    paged_q, total, page, limit = apply_pagination(q)
    return build_page_payload('tickets', [ticket_json(t) for t in paged_q.all()], total, page, limit)


@factories_bp.get('/search-users')
@require_auth
def search_users():
    session = get_db()
    memberships = session.execute(select(FactoryMember).where(FactoryMember.user_id == g.user.id)).scalars().all()
    allowed = any(
        check(Actor(g.user.id, factory_role=m.role), 'FACTORY.USERS.SEARCH')
        for m in memberships if m.approved_at is not None
    )
    if not allowed:
        abort(403, description='Forbidden - Factory owner/approver only')
    query = (request.args.get('q') or '').strip().lower()
    if len(query) < SEARCH_MIN_CHARS:
        return {'users': []}
    rows = session.execute(
        select(User)
        .where(func.lower(User.email).contains(query, autoescape=True))
        .order_by(User.id.asc())
        .limit(SEARCH_MAX_RESULTS)
    ).scalars().all()
    return {'users': [{'id': u.id, 'email': u.email, 'created_at': iso(u.created_at)} for u in rows]}


@factories_bp.get('/factories/<int:factory_id>/equipment')
@require_auth
def list_factory_equipment(factory_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.READ')
    q = session.query(Equipment).filter(Equipment.factory_id == factory_id)
    gym_id = request.args.get('gym_id')
    if gym_id == 'none':
        q = q.filter(Equipment.gym_id.is_(None))
    elif gym_id:
        q = q.filter(Equipment.gym_id == optional_int(gym_id, 'gym_id'))
    status = request.args.get('status')
    if status:
        q = q.filter(Equipment.status == validate_choice(status, Equipment.ALL_STATUSES, 'status'))
    q = q.order_by(Equipment.created_at.desc(), Equipment.id.desc())
    paged_q, total, page, limit = apply_pagination(q)
    return build_page_payload('equipment', [equipment_json(e) for e in paged_q.all()], total, page, limit)


def _factory_gym(session, factory_id: int, gym_id: int) -> Gym:
    gym = load_gym(session, gym_id)
    if gym.factory_id != factory_id:
        abort(404, description='Gym not found')
    return gym


@factories_bp.get('/factories/<int:factory_id>/users')
@require_auth
def list_factory_users(factory_id: int):
    """Everyone holding a role in the factory or one of its gyms, with all of their roles."""
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.USERS.READ')
    factory_user_ids = select(FactoryMember.user_id).where(FactoryMember.factory_id == factory_id)
    gym_user_ids = (
        select(GymMember.user_id)
        .join(Gym, Gym.id == GymMember.gym_id)
        .where(Gym.factory_id == factory_id)
    )
    q = (
        session.query(User)
        .filter(or_(User.id.in_(factory_user_ids), User.id.in_(gym_user_ids)))
        .order_by(User.email.asc(), User.id.asc())
    )
    paged_q, total, page, limit = apply_pagination(q)
    users = paged_q.all()
    ids = [u.id for u in users]
    factory_roles = {}
    for m in session.execute(
        select(FactoryMember).where(FactoryMember.factory_id == factory_id, FactoryMember.user_id.in_(ids))
    ).scalars():
        factory_roles.setdefault(m.user_id, []).append(m.role)
    gym_roles = {}
    for m, gym_name in session.execute(
        select(GymMember, Gym.name)
        .join(Gym, Gym.id == GymMember.gym_id)
        .where(Gym.factory_id == factory_id, GymMember.user_id.in_(ids))
        .order_by(Gym.name.asc(), Gym.id.asc())
    ).all():
        gym_roles.setdefault(m.user_id, []).append({
            'gym_id': m.gym_id,
            'gym_name': gym_name,
            'role': m.role,
            'approved_at': iso(m.approved_at),
        })
    rows = [{
        'id': u.id,
        'email': u.email,
        'name': u.name,
        'created_at': iso(u.created_at),
        'factory_roles': factory_roles.get(u.id, []),
        'gym_roles': gym_roles.get(u.id, []),
    } for u in users]
    return build_page_payload('users', rows, total, page, limit)


@factories_bp.post('/factories/<int:factory_id>/gyms/<int:gym_id>/members')
@require_auth
@audit_log('GYM.MEMBER.ADD', entity='GymMember', payload_key='member', entity_id_key='user_id',
           meta_keys=['gym_id', 'role'])
def assign_gym_role(factory_id: int, gym_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.GYMS.MANAGE')
    gym = _factory_gym(session, factory_id, gym_id)
    return create_gym_member(session, gym, json_body())


@factories_bp.delete('/factories/<int:factory_id>/gyms/<int:gym_id>/members/<int:user_id>')
@require_auth
@audit_log('GYM.MEMBER.REMOVE', entity='GymMember', entity_id_key='user_id', meta_keys=['gym_id'])
def remove_gym_role(factory_id: int, gym_id: int, user_id: int):
    session = get_db()
    _load_factory(session, factory_id)
    require(actor_for_factory(session, g.user.id, factory_id), 'FACTORY.GYMS.MANAGE')
    gym = _factory_gym(session, factory_id, gym_id)
    return delete_gym_member(session, gym, user_id)
