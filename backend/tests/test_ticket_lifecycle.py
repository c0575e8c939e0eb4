"""Pure lifecycle planning: no database, no request context."""
from types import SimpleNamespace
from gymfix.services.lifecycle import plan_transition, Transition, Rejection, ACTIONS
from gymfix.services.policy import Actor

GYM_OWNER = Actor(user_id=1, gym_role='owner')
GYM_EMPLOYEE = Actor(user_id=2, gym_role='employee')
FACTORY_EMPLOYEE = Actor(user_id=3, factory_role='employee')
APPROVER = Actor(user_id=4, factory_role='approver')
OUTSIDER = Actor(user_id=5)


def _visit(gym=False, factory=False, status='pending'):
    return SimpleNamespace(
        requested_by_gym_owner=gym,
        requested_by_factory_employee=factory,
        approval_status=status,
        both_requested=gym and factory,
    )


def test_actions_catalogue():
    assert set(ACTIONS) == {
        'start_review', 'start_gym_fix', 'resolve_internally', 'request_visit',
        'approve_visit', 'reject_visit', 'complete_visit',
    }


def test_start_review_by_factory_member():
    out = plan_transition('open', 'start_review', FACTORY_EMPLOYEE)
    assert isinstance(out, Transition)
    assert (out.from_status, out.to_status) == ('open', 'in_review')
    assert out.event_type == 'status_change'
    assert out.event_data == {'from': 'open', 'to': 'in_review'}
    assert out.notify_side == 'gym'


def test_unknown_action_is_400():
    out = plan_transition('open', 'teleport', GYM_OWNER)
    assert out == Rejection(400, 'Unknown action teleport')


def test_non_member_is_403():
    out = plan_transition('open', 'start_review', OUTSIDER)
    assert isinstance(out, Rejection) and out.status_code == 403


def test_wrong_role_is_403():
    assert plan_transition('open', 'start_gym_fix', GYM_EMPLOYEE).status_code == 403
    assert plan_transition('factory_visit_requested', 'approve_visit', FACTORY_EMPLOYEE, visit=_visit(True, True)).status_code == 403


def test_terminal_states_are_409():
    for status in ('closed', 'rejected'):
        out = plan_transition(status, 'request_visit', GYM_OWNER)
        assert isinstance(out, Rejection)
        assert out.status_code == 409


def test_illegal_source_is_409():
    out = plan_transition('resolved', 'start_gym_fix', GYM_OWNER)
    assert out.status_code == 409
    out = plan_transition('in_review', 'start_review', FACTORY_EMPLOYEE)
    assert out.status_code == 409


def test_resolve_internally_requires_notes():
    assert plan_transition('open', 'resolve_internally', GYM_OWNER) == Rejection(400, 'notes required')
    out = plan_transition('gym_fix_in_progress', 'resolve_internally', GYM_OWNER, {'notes': 'tightened bolts'})
    assert out.to_status == 'resolved'
    assert out.event_data['resolution_type'] == 'internal'
    assert out.notify_side == 'factory'


def test_reject_visit_requires_reason():
    out = plan_transition('awaiting_factory_review', 'reject_visit', APPROVER, {}, _visit(gym=True))
    assert out == Rejection(400, 'reason required')


def test_first_visit_request_waits_for_other_side():
    out = plan_transition('open', 'request_visit', GYM_OWNER)
    assert out.to_status == 'awaiting_factory_review'
    assert out.event_type == 'approval_requested'
    assert out.event_data['by'] == 'gym_owner'
    assert out.notify_side == 'factory'


def test_second_visit_request_moves_to_requested():
    out = plan_transition('awaiting_factory_review', 'request_visit', FACTORY_EMPLOYEE, visit=_visit(gym=True))
    assert out.to_status == 'factory_visit_requested'
    assert out.notify_side == 'gym'


def test_repeated_visit_request_same_side_is_409():
    out = plan_transition('awaiting_factory_review', 'request_visit', GYM_OWNER, visit=_visit(gym=True))
    assert out == Rejection(409, 'Factory visit already requested')


def test_approve_needs_both_requests():
    out = plan_transition('factory_visit_requested', 'approve_visit', APPROVER, visit=_visit(gym=True))
    assert out.status_code == 409
    out = plan_transition('factory_visit_requested', 'approve_visit', APPROVER,
                          {'scheduled_visit_at': '2030-01-02T10:00:00Z', 'technician_assigned_id': '7'},
                          _visit(True, True))
    assert out.to_status == 'factory_visit_approved'
    assert out.event_data['scheduled_visit_at'] == '2030-01-02T10:00:00+00:00'
    assert out.event_data['technician_assigned_id'] == 7


def test_approve_rejects_bad_schedule():
    out = plan_transition('factory_visit_requested', 'approve_visit', APPROVER,
                          {'scheduled_visit_at': 'next tuesday'}, _visit(True, True))
    assert out == Rejection(400, 'scheduled_visit_at must be ISO-8601')


def test_dual_role_actor_must_pick_side():
    both = Actor(user_id=9, gym_role='owner', factory_role='employee')
    assert plan_transition('open', 'request_visit', both) == Rejection(400, 'side required')
    out = plan_transition('open', 'request_visit', both, {'side': 'factory'})
    assert out.side == 'factory'
    assert out.event_data['by'] == 'factory_employee'


def test_unknown_side_is_400():
    assert plan_transition('open', 'request_visit', GYM_OWNER, {'side': 'foo'}) == Rejection(400, 'side invalid')
    assert plan_transition('open', 'start_review', FACTORY_EMPLOYEE, {'side': ['factory']}) == Rejection(400, 'side invalid')
    out = plan_transition('open', 'start_review', FACTORY_EMPLOYEE, {'side': 'gym'})
    assert out == Rejection(403, 'Forbidden - cannot act on the gym side')
