from __future__ import annotations
"""Ticket lifecycle: the only place that changes ``Ticket.status``.

``plan_transition`` is pure. Given the current status, the requested action,
the caller's roles and the visit request (if any) it returns a ``Transition``
describing the new status and its side effects, or a ``Rejection`` carrying
the HTTP status to answer with. ``apply_transition`` writes a planned
transition: a compare-and-set on the status column, the visit request
changes, one event row and the notifications, committed together.

Closing (``resolved -> closed``) is not an action; it happens only through
the dual confirmation in ``gymfix.services.confirmations``.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from flask import abort, current_app
from sqlalchemy import update

from gymfix.constants.roles import (
    SIDE_GYM, SIDE_FACTORY, SIDES, GYM_OWNER, FACTORY_OWNER, FACTORY_APPROVER,
)
from gymfix.models.authz import utcnow
from gymfix.models.notification import Notification
from gymfix.models.ticket import Ticket, TicketEvent, FactoryVisitRequest
from gymfix.services.events import append_event
from gymfix.services.notifications import emit, publish_committed
from gymfix.services.policy import Actor, check, stakeholder_ids
from gymfix.utils.fsm import TransitionGraph

T = Ticket

TICKET_GRAPH = TransitionGraph({
    T.STATUS_OPEN: {T.STATUS_IN_REVIEW, T.STATUS_GYM_FIX, T.STATUS_RESOLVED, T.STATUS_AWAITING_FACTORY},
    T.STATUS_IN_REVIEW: {T.STATUS_GYM_FIX, T.STATUS_RESOLVED, T.STATUS_AWAITING_FACTORY},
    T.STATUS_GYM_FIX: {T.STATUS_RESOLVED, T.STATUS_AWAITING_FACTORY},
    T.STATUS_AWAITING_FACTORY: {T.STATUS_VISIT_REQUESTED, T.STATUS_REJECTED},
    T.STATUS_VISIT_REQUESTED: {T.STATUS_VISIT_APPROVED, T.STATUS_REJECTED},
    T.STATUS_VISIT_APPROVED: {T.STATUS_RESOLVED},
    T.STATUS_RESOLVED: {T.STATUS_CLOSED},
    T.STATUS_CLOSED: set(),
    T.STATUS_REJECTED: set(),
})


@dataclass(frozen=True)
class ActionRule:
    name: str
    capability: str
    sources: FrozenSet[str]
    target: Optional[str]  # None: decided by the visit request state
    event_type: str
    notification: str
    notify_side: str  # 'gym', 'factory' or 'other' (opposite of the acting side)
    required: Tuple[str, ...] = ()


RULES: Dict[str, ActionRule] = {r.name: r for r in (
    ActionRule('start_review', 'TICKET.REVIEW', frozenset({T.STATUS_OPEN}), T.STATUS_IN_REVIEW,
               TicketEvent.TYPE_STATUS_CHANGE, Notification.TYPE_TICKET_UPDATED, SIDE_GYM),
    ActionRule('start_gym_fix', 'TICKET.GYM_FIX', frozenset({T.STATUS_OPEN, T.STATUS_IN_REVIEW}), T.STATUS_GYM_FIX,
               TicketEvent.TYPE_STATUS_CHANGE, Notification.TYPE_TICKET_UPDATED, SIDE_FACTORY),
    ActionRule('resolve_internally', 'TICKET.GYM_FIX', frozenset({T.STATUS_OPEN, T.STATUS_IN_REVIEW, T.STATUS_GYM_FIX}),
               T.STATUS_RESOLVED, TicketEvent.TYPE_STATUS_CHANGE, Notification.TYPE_TICKET_UPDATED, SIDE_FACTORY,
               required=('notes',)),
    ActionRule('request_visit', 'TICKET.VISIT.REQUEST',
               frozenset({T.STATUS_OPEN, T.STATUS_IN_REVIEW, T.STATUS_GYM_FIX, T.STATUS_AWAITING_FACTORY}), None,
               TicketEvent.TYPE_APPROVAL_REQUESTED, Notification.TYPE_VISIT_REQUESTED, 'other'),
    ActionRule('approve_visit', 'TICKET.VISIT.DECIDE', frozenset({T.STATUS_VISIT_REQUESTED}), T.STATUS_VISIT_APPROVED,
               TicketEvent.TYPE_APPROVAL_GRANTED, Notification.TYPE_VISIT_APPROVED, SIDE_GYM),
    ActionRule('reject_visit', 'TICKET.VISIT.DECIDE', frozenset({T.STATUS_AWAITING_FACTORY, T.STATUS_VISIT_REQUESTED}),
               T.STATUS_REJECTED, TicketEvent.TYPE_APPROVAL_REJECTED, Notification.TYPE_VISIT_REJECTED, SIDE_GYM,
               required=('reason',)),
    ActionRule('complete_visit', 'TICKET.VISIT.COMPLETE', frozenset({T.STATUS_VISIT_APPROVED}), T.STATUS_RESOLVED,
               TicketEvent.TYPE_STATUS_CHANGE, Notification.TYPE_TICKET_UPDATED, SIDE_GYM),
)}

ACTIONS = tuple(RULES)

# who hears about changes on each side
NOTIFY_ROLES = {
    SIDE_GYM: (GYM_OWNER,),
    SIDE_FACTORY: (FACTORY_OWNER, FACTORY_APPROVER),
}


@dataclass(frozen=True)
class Transition:
    action: str
    from_status: str
    to_status: str
    side: str
    event_type: str
    event_data: Dict[str, Any]
    notification: str
    notify_side: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rejection:
    status_code: int
    reason: str


Outcome = Union[Transition, Rejection]


def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _acting_side(rule: ActionRule, actor: Actor, requested: Optional[str]) -> Union[str, Rejection]:
    """Pick which of the actor's sides performs the action."""
    eligible = [s for s in (SIDE_GYM, SIDE_FACTORY) if check(actor.on_side(s), rule.capability)]
    if requested:
        if requested not in SIDES:
            return Rejection(400, 'side invalid')
        if requested not in eligible:
            return Rejection(403, f'Forbidden - cannot act on the {requested} side')
        return requested
    if len(eligible) > 1:
        return Rejection(400, 'side required')
    return eligible[0]


def parse_when(raw) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` accepted); naive values are taken as UTC."""
    if raw in (None, ''):
        return None
    dt = datetime.fromisoformat(str(raw).replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def plan_transition(status: str, action: str, actor: Actor, payload: Optional[Dict[str, Any]] = None,
                    visit: Optional[FactoryVisitRequest] = None) -> Outcome:
    payload = payload or {}
    rule = RULES.get(action)
    if rule is None:
        return Rejection(400, f'Unknown action {action}')
    authz = check(actor, rule.capability)
    if not authz:
        return Rejection(403, authz.reason)
    if TICKET_GRAPH.is_terminal(status):
        return Rejection(409, f'Ticket is {status}; no further changes allowed')
    if status not in rule.sources:
        target = rule.target or T.STATUS_AWAITING_FACTORY
        return Rejection(409, TICKET_GRAPH.describe(status, target))
    for key in rule.required:
        if not _text(payload, key):
            return Rejection(400, f'{key} required')
    side = _acting_side(rule, actor, payload.get('side'))
    if isinstance(side, Rejection):
        return side

    target = rule.target
    data: Dict[str, Any] = {'from': status}
    if action == 'request_visit':
        if visit is not None:
            if visit.approval_status != FactoryVisitRequest.APPROVAL_PENDING:
                return Rejection(409, f'Visit request already {visit.approval_status}')
            already = visit.requested_by_gym_owner if side == SIDE_GYM else visit.requested_by_factory_employee
            if already:
                return Rejection(409, 'Factory visit already requested')
            other = visit.requested_by_factory_employee if side == SIDE_GYM else visit.requested_by_gym_owner
        else:
            other = False
        target = T.STATUS_VISIT_REQUESTED if other else T.STATUS_AWAITING_FACTORY
        data['by'] = 'gym_owner' if side == SIDE_GYM else 'factory_employee'
        if _text(payload, 'reason'):
            data['reason'] = _text(payload, 'reason')
    elif action in ('approve_visit', 'reject_visit'):
        if visit is None or visit.approval_status != FactoryVisitRequest.APPROVAL_PENDING:
            return Rejection(409, 'No pending visit request')
        if action == 'approve_visit' and not visit.both_requested:
            return Rejection(409, 'Both gym owner and factory employee must request the visit before approval')
        if action == 'reject_visit':
            data['reason'] = _text(payload, 'reason')
        else:
            try:
                when = parse_when(payload.get('scheduled_visit_at'))
            except ValueError:
                return Rejection(400, 'scheduled_visit_at must be ISO-8601')
            if when is not None:
                data['scheduled_visit_at'] = when.isoformat()
            tech = payload.get('technician_assigned_id')
            if tech not in (None, ''):
                try:
                    data['technician_assigned_id'] = int(tech)
                except (TypeError, ValueError):
                    return Rejection(400, 'technician_assigned_id must be int')
    elif action == 'resolve_internally':
        data['resolution_type'] = 'internal'
        data['notes'] = _text(payload, 'notes')
    elif action == 'complete_visit':
        data['resolution_type'] = 'factory_visit'
        if _text(payload, 'notes'):
            data['notes'] = _text(payload, 'notes')
    elif _text(payload, 'note'):
        data['note'] = _text(payload, 'note')

    if not TICKET_GRAPH.can_transition(status, target):
        return Rejection(409, TICKET_GRAPH.describe(status, target))
    data['to'] = target
    notify_side = rule.notify_side
    if notify_side == 'other':
        notify_side = SIDE_FACTORY if side == SIDE_GYM else SIDE_GYM
    return Transition(
        action=action,
        from_status=status,
        to_status=target,
        side=side,
        event_type=rule.event_type,
        event_data=data,
        notification=rule.notification,
        notify_side=notify_side,
        payload=dict(payload),
    )


def recipients(session, ticket: Ticket, side: str):
    if side == SIDE_GYM:
        ids = stakeholder_ids(session, gym_id=ticket.gym_id, gym_roles=NOTIFY_ROLES[SIDE_GYM])
        ids.add(ticket.created_by)
        return ids
    return stakeholder_ids(session, factory_id=ticket.factory_id, factory_roles=NOTIFY_ROLES[SIDE_FACTORY])


def _apply_visit_changes(session, ticket: Ticket, tr: Transition, actor: Actor, visit: Optional[FactoryVisitRequest]):
    now = utcnow()
    if tr.action == 'request_visit':
        if visit is None:
            visit = FactoryVisitRequest(ticket_id=ticket.id, approval_status=FactoryVisitRequest.APPROVAL_PENDING,
                                        requested_by_gym_owner=False, requested_by_factory_employee=False)
            session.add(visit)
        if tr.side == SIDE_GYM:
            visit.requested_by_gym_owner = True
            visit.gym_owner_user_id = actor.user_id
            visit.gym_owner_requested_at = now
        else:
            visit.requested_by_factory_employee = True
            visit.factory_employee_user_id = actor.user_id
            visit.factory_employee_requested_at = now
    elif tr.action == 'approve_visit':
        visit.approval_status = FactoryVisitRequest.APPROVAL_APPROVED
        visit.approved_by = actor.user_id
        visit.approved_at = now
        visit.scheduled_visit_at = parse_when(tr.event_data.get('scheduled_visit_at'))
        visit.technician_assigned_id = tr.event_data.get('technician_assigned_id')
    elif tr.action == 'reject_visit':
        visit.approval_status = FactoryVisitRequest.APPROVAL_REJECTED
        visit.approved_by = actor.user_id
        visit.approved_at = now
        visit.rejection_reason = tr.event_data['reason']
    elif tr.action == 'complete_visit' and visit is not None and tr.event_data.get('notes'):
        visit.visit_notes = tr.event_data['notes']
    return visit


def apply_transition(session, ticket: Ticket, tr: Transition, actor: Actor, visit: Optional[FactoryVisitRequest] = None) -> Ticket:
    """Persist a planned transition atomically; aborts 409 if the ticket moved meanwhile."""
    now = utcnow()
    values: Dict[str, Any] = {'status': tr.to_status, 'updated_at': now}
    if tr.to_status == T.STATUS_RESOLVED:
        values.update(resolved_by=actor.user_id, resolved_at=now, resolution_notes=tr.event_data.get('notes'))
    stmt = (
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == tr.from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount != 1:
        session.rollback()
        abort(409, description='Ticket was modified concurrently; reload and retry')
    _apply_visit_changes(session, ticket, tr, actor, visit)
    append_event(session, ticket.id, actor.user_id, tr.event_type, tr.event_data)
    rows = emit(session, recipients(session, ticket, tr.notify_side), tr.notification,
                {'ticket_id': ticket.id, 'action': tr.action, 'status': tr.to_status}, exclude=actor.user_id)
    session.commit()
    session.refresh(ticket)
    current_app.logger.info('Ticket %s %s: %s -> %s by user %s', ticket.id, tr.action, tr.from_status, tr.to_status, actor.user_id)
    publish_committed(rows)
    return ticket
