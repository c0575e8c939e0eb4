from functools import wraps
from flask import abort, g
from flask_jwt_extended import verify_jwt_in_request
from sqlalchemy import select
from gymfix.models.authz import User
from gymfix.services.policy import current_user_id
from gymfix import get_db


def require_auth(fn):
    """Reject requests without a valid token for an existing user; exposes ``g.user``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        user = get_db().execute(select(User).where(User.id == current_user_id())).scalar_one_or_none()
        if not user:
            abort(401, description='Unauthorized')
        g.user = user
        return fn(*args, **kwargs)
    return wrapper
