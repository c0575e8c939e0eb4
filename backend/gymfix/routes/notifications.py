from __future__ import annotations
import json
import math
import queue
import time
from flask import Blueprint, Response, request, abort, g, current_app, stream_with_context
from sqlalchemy import update
from gymfix.decorators.auth import require_auth
from gymfix.models.authz import utcnow
from gymfix.models.notification import Notification
from gymfix.services.notifications import hub, notification_json
from gymfix.utils.listing import apply_pagination, build_page_payload
from gymfix import get_db

notifications_bp = Blueprint('notifications', __name__)

HEARTBEAT_SECONDS = 15.0
MAX_STREAM_SECONDS = 300.0


@notifications_bp.get('')
@require_auth
def list_notifications():
    session = get_db()
    q = session.query(Notification).filter(Notification.user_id == g.user.id)
    if request.args.get('unread') in ('1', 'true'):
        q = q.filter(Notification.read_at.is_(None))
    q = q.order_by(Notification.created_at.desc(), Notification.id.desc())
    paged_q, total, page, limit = apply_pagination(q)
    unread = (
        session.query(Notification)
        .filter(Notification.user_id == g.user.id, Notification.read_at.is_(None))
        .count()
    )
    body = build_page_payload('notifications', [notification_json(n) for n in paged_q.all()], total, page, limit)
    body['unread'] = unread
    return body


@notifications_bp.post('/<int:notification_id>/read')
@require_auth
def mark_read(notification_id: int):
    session = get_db()
    n = session.get(Notification, notification_id)
    # other users' notifications are reported as missing
    if not n or n.user_id != g.user.id:
        abort(404, description='Notification not found')
    if n.read_at is None:
        n.read_at = utcnow()
        session.commit()
    return notification_json(n)


@notifications_bp.post('/read-all')
@require_auth
def mark_all_read():
    session = get_db()
    updated = session.execute(
        update(Notification)
        .where(Notification.user_id == g.user.id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    session.commit()
    return {'updated': updated}


def _sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@notifications_bp.get('/stream')
@require_auth
def stream():
    """Server-Sent Events feed of new notifications for the caller.

    The connection ends after ``timeout`` seconds (query arg, defaults to
    NOTIFICATION_STREAM_TIMEOUT); clients reconnect and catch up through
    ``GET /notifications``.
    """
    try:
        timeout = float(request.args.get('timeout', current_app.config['NOTIFICATION_STREAM_TIMEOUT']))
    except ValueError:
        abort(400, description='timeout must be a number')
    if not math.isfinite(timeout) or timeout <= 0:
        abort(400, description='timeout must be a positive number of seconds')
    timeout = min(timeout, MAX_STREAM_SECONDS)
    user_id = g.user.id
    q = hub.subscribe(user_id)
    current_app.logger.debug('Notification stream opened for user %s', user_id)

    def generate():
        deadline = time.monotonic() + timeout
        try:
            yield _sse('connected', {'user_id': user_id})
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    message = q.get(timeout=min(HEARTBEAT_SECONDS, remaining))
                except queue.Empty:
                    yield ': keepalive\n\n'
                    continue
                yield _sse('notification', message)
        finally:
            hub.unsubscribe(user_id, q)

    return Response(stream_with_context(generate()), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})
