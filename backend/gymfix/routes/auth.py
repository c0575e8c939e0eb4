from flask import Blueprint, request, abort, g
from flask_jwt_extended import create_access_token
from sqlalchemy import select
from gymfix.models.authz import User, FactoryMember, GymMember, iso
from gymfix.decorators.auth import require_auth
from gymfix.utils.validation import require_fields, json_body, optional_str
from gymfix import get_db

auth_bp = Blueprint('auth', __name__)


def _user_json(u: User):
    return {'id': u.id, 'name': u.name, 'email': u.email, 'created_at': iso(u.created_at)}


@auth_bp.post('/register')
def register():
    data = json_body()
    require_fields(data, 'email', 'password')
    email = optional_str(data['email'], 'email').lower()
    if not isinstance(data['password'], str):
        abort(400, description='password must be a string')
    if '@' not in email:
        abort(400, description='email invalid')
    session = get_db()
    if session.execute(select(User).where(User.email == email)).scalar_one_or_none():
        abort(409, description='email already registered')
    user = User(name=optional_str(data.get('name'), 'name') or email.split('@')[0], email=email, password_hash='')
    user.set_password(data['password'])
    session.add(user)
    session.commit()
    return _user_json(user), 201


@auth_bp.post('/login')
def login():
    data = json_body()
    email = (optional_str(data.get('email'), 'email') or '').lower()
    password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    if not isinstance(password, str):
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.verify_password(password):
        abort(401, description='invalid credentials')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id))
    return {'access_token': token}


@auth_bp.get('/me')
@require_auth
def me():
    session = get_db()
    user = g.user
    factories = session.execute(select(FactoryMember).where(FactoryMember.user_id == user.id)).scalars().all()
    gyms = session.execute(select(GymMember).where(GymMember.user_id == user.id)).scalars().all()
    body = _user_json(user)
    body['factories'] = [
        {'factory_id': m.factory_id, 'role': m.role, 'approved_at': iso(m.approved_at)} for m in factories
    ]
    body['gyms'] = [
        {'gym_id': m.gym_id, 'role': m.role, 'approved_at': iso(m.approved_at)} for m in gyms
    ]
    return body
