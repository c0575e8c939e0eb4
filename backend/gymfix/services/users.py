from __future__ import annotations
from flask import abort
from sqlalchemy import select
from gymfix.models.authz import User
from gymfix.utils.validation import optional_int, optional_str


def resolve_user(session, data: dict) -> User:
    """Find the target user of a membership request by ``user_id`` or ``email``."""
    user_id = optional_int(data.get('user_id'), 'user_id')
    email = (optional_str(data.get('email'), 'email') or '').lower()
    if user_id is None and not email:
        abort(400, description='user_id or email required')
    q = select(User).where(User.id == user_id) if user_id is not None else select(User).where(User.email == email)
    user = session.execute(q).scalar_one_or_none()
    if not user:
        abort(404, description='User not found')
    return user
