from __future__ import annotations
"""Notification rows plus the in-process push channel that fans them out.

Rows are written inside the caller's transaction with ``emit``; once the
caller has committed, ``publish_committed`` hands them to ``hub`` so open
``/notifications/stream`` connections receive them. Delivery is best effort:
a subscriber that is not connected simply reads the rows on its next listing.
"""
import queue
import threading
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app, has_app_context
from gymfix.models.authz import iso
from gymfix.models.notification import Notification


class NotificationHub:
    """Per-user fan-out of JSON messages to bounded subscriber queues."""

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._lock = threading.Lock()
        self._subscribers: Dict[int, List[queue.Queue]] = defaultdict(list)

    def subscribe(self, user_id: int) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.max_queue)
        with self._lock:
            self._subscribers[user_id].append(q)
        return q

    def unsubscribe(self, user_id: int, q: queue.Queue) -> None:
        with self._lock:
            subs = self._subscribers.get(user_id, [])
            if q in subs:
                subs.remove(q)
            if not subs:
                self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: int, message: Dict[str, Any]) -> int:
        """Queue ``message`` for every subscriber of ``user_id``; returns how many received it."""
        with self._lock:
            targets = list(self._subscribers.get(user_id, []))
        delivered = 0
        for q in targets:
            try:
                q.put_nowait(message)
                delivered += 1
            except queue.Full:
                if has_app_context():
                    current_app.logger.warning('Dropping notification for slow subscriber of user %s', user_id)
        return delivered


hub = NotificationHub()


def emit(session, user_ids: Iterable[int], ntype: str, payload: Optional[Dict[str, Any]] = None, exclude: Optional[int] = None) -> List[Notification]:
    if ntype not in Notification.ALL_TYPES:
        raise ValueError(f'unknown notification type {ntype}')
    rows = []
    for uid in sorted(set(user_ids)):
        if uid is None or uid == exclude:
            continue
        n = Notification(user_id=uid, type=ntype, payload=dict(payload or {}))
        session.add(n)
        rows.append(n)
    return rows


def publish_committed(rows: Iterable[Notification]) -> int:
    delivered = 0
    for n in rows:
        delivered += hub.publish(n.user_id, notification_json(n))
    return delivered


def notification_json(n: Notification):
    return {
        'id': n.id,
        'user_id': n.user_id,
        'type': n.type,
        'payload': n.payload or {},
        'read_at': iso(n.read_at),
        'created_at': iso(n.created_at),
    }
