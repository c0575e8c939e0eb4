import uuid
from gymfix import get_db
from gymfix.models.notification import Notification
from tests.test_utils_seed import seed_world, create_equipment, new_user
from tests.test_lifecycle_helpers import jwt_headers, create_ticket, act


def _notified(user_id: int, ntype: str):
    return get_db().query(Notification).filter_by(user_id=user_id, type=ntype).all()


def test_report_from_qr_opens_ticket(client):
    qr = f"EQ-1234-{uuid.uuid4().hex[:6]}"
    world = seed_world(qr_code=qr)
    headers = jwt_headers(world['gym_employee'].id)
    ticket = create_ticket(client, headers, qr, 'belt slipping')
    assert ticket['status'] == 'open'
    assert ticket['priority'] == 'medium'
    assert ticket['equipment_id'] == world['equipment'].id
    assert ticket['gym_id'] == world['gym'].id
    assert ticket['factory_id'] == world['factory'].id

    events = client.get(f"/tickets/{ticket['id']}/events", headers=headers).get_json()['events']
    assert len(events) == 1
    assert events[0]['event_type'] == 'status_change'
    assert events[0]['data'] == {'from': None, 'to': 'open'}

    for key in ('gym_owner', 'factory_owner', 'approver'):
        rows = _notified(world[key].id, 'ticket_created')
        assert [n.payload['ticket_id'] for n in rows] == [ticket['id']]
    # the reporter and plain factory employees are not notified
    assert _notified(world['gym_employee'].id, 'ticket_created') == []
    assert _notified(world['factory_employee'].id, 'ticket_created') == []


def test_report_validations(client):
    world = seed_world()
    headers = jwt_headers(world['gym_employee'].id)
    resp = client.post('/tickets', json={'qr_code': world['equipment'].qr_code}, headers=headers)
    assert resp.status_code == 400
    resp = client.post('/tickets', json={'qr_code': 'EQ-missing', 'description': 'x'}, headers=headers)
    assert resp.status_code == 404
    resp = client.post('/tickets', json={'qr_code': world['equipment'].qr_code, 'description': 'x', 'priority': 'urgent'},
                       headers=headers)
    assert resp.status_code == 400


def test_report_requires_gym_membership(client):
    world = seed_world()
    for key in ('outsider', 'factory_owner'):
        resp = client.post('/tickets', json={'qr_code': world['equipment'].qr_code, 'description': 'x'},
                           headers=jwt_headers(world[key].id))
        assert resp.status_code == 403


def test_unassigned_equipment_cannot_be_reported(client):
    world = seed_world()
    spare = create_equipment(world['factory'], world['factory_owner'], gym=None)
    resp = client.post('/tickets', json={'qr_code': spare.qr_code, 'description': 'x'},
                       headers=jwt_headers(world['gym_employee'].id))
    assert resp.status_code == 409


def test_ticket_detail_and_read_access(client):
    world = seed_world()
    ticket = create_ticket(client, jwt_headers(world['gym_employee'].id), world['equipment'].qr_code,
                           'display dead', priority='high', photo_url='http://localhost/media/reports/a.jpg')
    body = client.get(f"/tickets/{ticket['id']}", headers=jwt_headers(world['factory_employee'].id)).get_json()
    assert body['priority'] == 'high'
    assert body['equipment']['qr_code'] == world['equipment'].qr_code
    assert body['visit_request'] is None
    events = client.get(f"/tickets/{ticket['id']}/events", headers=jwt_headers(world['gym_owner'].id)).get_json()['events']
    assert [e['event_type'] for e in events] == ['status_change', 'attachment']
    assert client.get(f"/tickets/{ticket['id']}", headers=jwt_headers(world['outsider'].id)).status_code == 403
    assert client.get('/tickets/999999', headers=jwt_headers(world['gym_owner'].id)).status_code == 404


def test_comments_append_events_and_notify_other_side(client):
    world = seed_world()
    ticket = create_ticket(client, jwt_headers(world['gym_employee'].id), world['equipment'].qr_code)
    resp = client.post(f"/tickets/{ticket['id']}/comments", json={'body': 'Checking tomorrow'},
                       headers=jwt_headers(world['factory_employee'].id))
    assert resp.status_code == 201
    assert resp.get_json()['event_type'] == 'comment'
    updates = _notified(world['gym_owner'].id, 'ticket_updated')
    assert [n.payload['action'] for n in updates] == ['comment']
    assert _notified(world['approver'].id, 'ticket_updated') == []
    resp = client.post(f"/tickets/{ticket['id']}/comments", json={}, headers=jwt_headers(world['gym_owner'].id))
    assert resp.status_code == 400
    resp = client.post(f"/tickets/{ticket['id']}/comments", json={'body': 'hi'}, headers=jwt_headers(world['outsider'].id))
    assert resp.status_code == 403


def test_gym_fix_path_and_status_guard(client):
    world = seed_world()
    ticket = create_ticket(client, jwt_headers(world['gym_employee'].id), world['equipment'].qr_code)
    tid = ticket['id']
    act(client, tid, 'start_review', jwt_headers(world['factory_employee'].id), expected_ticket_status='in_review')
    act(client, tid, 'start_gym_fix', jwt_headers(world['gym_employee'].id), expected_status=403)
    act(client, tid, 'start_gym_fix', jwt_headers(world['gym_owner'].id), expected_ticket_status='gym_fix_in_progress')
    act(client, tid, 'start_review', jwt_headers(world['factory_employee'].id), expected_status=409)
    act(client, tid, 'resolve_internally', jwt_headers(world['gym_owner'].id), expected_status=400)
    resp = act(client, tid, 'resolve_internally', jwt_headers(world['gym_owner'].id),
               payload={'notes': 'Belt tension adjusted'}, expected_ticket_status='resolved')
    body = resp.get_json()
    assert body['resolved_by'] == world['gym_owner'].id
    assert body['resolution_notes'] == 'Belt tension adjusted'
    events = client.get(f'/tickets/{tid}/events', headers=jwt_headers(world['gym_owner'].id)).get_json()['events']
    assert [e['data']['to'] for e in events] == ['open', 'in_review', 'gym_fix_in_progress', 'resolved']
    act(client, tid, 'teleport', jwt_headers(world['gym_owner'].id), expected_status=400)


def test_factory_ticket_listing_filters_and_sort(client):
    world = seed_world()
    headers = jwt_headers(world['gym_employee'].id)
    low = create_ticket(client, headers, world['equipment'].qr_code, 'squeak', priority='low')
    high = create_ticket(client, headers, world['equipment'].qr_code, 'sparks', priority='high')
    fh = jwt_headers(world['factory_owner'].id)
    fid = world['factory'].id

    body = client.get(f'/factories/{fid}/tickets?priority=high', headers=fh).get_json()
    assert [t['id'] for t in body['tickets']] == [high['id']]
    body = client.get(f'/factories/{fid}/tickets?sort=id', headers=fh).get_json()
    assert [t['id'] for t in body['tickets']] == [low['id'], high['id']]
    body = client.get(f"/factories/{fid}/tickets?gym_id={world['gym'].id}&status=open", headers=fh).get_json()
    assert body['pagination']['total'] == 2
    assert client.get(f'/factories/{fid}/tickets?sort=bogus', headers=fh).status_code == 400
    assert client.get(f'/factories/{fid}/tickets?status=done', headers=fh).status_code == 400
    assert client.get(f'/factories/{fid}/tickets', headers=headers).status_code == 403


def test_suspended_gym_cannot_report(client):
    world = seed_world()
    stranger = new_user('stranger')
    resp = client.post(f"/gyms/{world['gym'].id}/suspend", headers=jwt_headers(world['approver'].id))
    assert resp.status_code == 200
    resp = client.post('/tickets', json={'qr_code': world['equipment'].qr_code, 'description': 'x'},
                       headers=jwt_headers(world['gym_employee'].id))
    assert resp.status_code == 409
    resp = client.post('/tickets', json={'qr_code': world['equipment'].qr_code, 'description': 'x'},
                       headers=jwt_headers(stranger.id))
    assert resp.status_code == 403


def test_gym_ticket_listing_embeds_equipment_and_sorts_by_severity(client):
    world = seed_world()
    headers = jwt_headers(world['gym_employee'].id)
    qr = world['equipment'].qr_code
    low = create_ticket(client, headers, qr, 'squeak', priority='low')
    high = create_ticket(client, headers, qr, 'sparks', priority='high')
    medium = create_ticket(client, headers, qr, 'wobble', priority='medium')
    gid = world['gym'].id

    body = client.get(f'/gym/tickets/list?gym_id={gid}', headers=headers).get_json()
    assert [t['id'] for t in body['tickets']] == [medium['id'], high['id'], low['id']]
    e = world['equipment']
    assert body['tickets'][0]['equipment'] == {'id': e.id, 'name': e.name, 'serial_number': e.serial_number}

    body = client.get(f'/gym/tickets/list?gym_id={gid}&sort=-priority', headers=headers).get_json()
    assert [t['priority'] for t in body['tickets']] == ['high', 'medium', 'low']
    body = client.get(f'/gym/tickets/list?gym_id={gid}&sort=priority', headers=headers).get_json()
    assert [t['id'] for t in body['tickets']] == [low['id'], medium['id'], high['id']]
    resp = client.get(f'/gym/tickets/list?gym_id={gid}&sort=priority,-priority', headers=headers)
    assert resp.status_code == 400
