import queue
import pytest
from gymfix.services.notifications import NotificationHub, hub
from tests.test_utils_seed import seed_world
from tests.test_lifecycle_helpers import jwt_headers, create_ticket


def test_hub_fans_out_per_user():
    h = NotificationHub(max_queue=1)
    a1 = h.subscribe(1)
    a2 = h.subscribe(1)
    b = h.subscribe(2)
    assert h.publish(1, {'n': 1}) == 2
    assert a1.get_nowait() == {'n': 1} and a2.get_nowait() == {'n': 1}
    with pytest.raises(queue.Empty):
        b.get_nowait()
    # a full queue drops the message instead of blocking
    h.publish(2, {'n': 2})
    assert h.publish(2, {'n': 3}) == 0
    h.unsubscribe(1, a1)
    h.unsubscribe(1, a2)
    assert h.subscriber_count(1) == 0
    assert h.publish(1, {'n': 4}) == 0


def test_committed_notifications_reach_subscribers(client):
    world = seed_world()
    q = hub.subscribe(world['gym_owner'].id)
    try:
        ticket = create_ticket(client, jwt_headers(world['gym_employee'].id), world['equipment'].qr_code)
        message = q.get(timeout=1)
    finally:
        hub.unsubscribe(world['gym_owner'].id, q)
    assert message['type'] == 'ticket_created'
    assert message['payload']['ticket_id'] == ticket['id']
    assert message['id'] is not None


def test_list_and_mark_read(client):
    world = seed_world()
    create_ticket(client, jwt_headers(world['gym_employee'].id), world['equipment'].qr_code, 'one')
    create_ticket(client, jwt_headers(world['gym_employee'].id), world['equipment'].qr_code, 'two')
    headers = jwt_headers(world['factory_owner'].id)

    body = client.get('/notifications', headers=headers).get_json()
    assert body['pagination']['total'] == 2
    assert body['unread'] == 2
    first_id = body['notifications'][0]['id']

    resp = client.post(f'/notifications/{first_id}/read', headers=headers)
    assert resp.status_code == 200 and resp.get_json()['read_at'] is not None
    body = client.get('/notifications?unread=1', headers=headers).get_json()
    assert first_id not in [n['id'] for n in body['notifications']]
    assert body['unread'] == 1

    # someone else's notification looks missing
    assert client.post(f'/notifications/{first_id}/read', headers=jwt_headers(world['approver'].id)).status_code == 404

    assert client.post('/notifications/read-all', headers=headers).get_json() == {'updated': 1}
    assert client.get('/notifications', headers=headers).get_json()['unread'] == 0


def test_stream_sends_connected_event_and_closes(client):
    world = seed_world()
    resp = client.get('/notifications/stream?timeout=0.05', headers=jwt_headers(world['gym_owner'].id))
    assert resp.status_code == 200
    assert resp.mimetype == 'text/event-stream'
    text = resp.get_data(as_text=True)
    assert text.startswith('event: connected')
    assert hub.subscriber_count(world['gym_owner'].id) == 0


def test_stream_rejects_bad_timeout(client):
    world = seed_world()
    headers = jwt_headers(world['gym_owner'].id)
    assert client.get('/notifications/stream?timeout=soon', headers=headers).status_code == 400
    assert client.get('/notifications/stream?timeout=0', headers=headers).status_code == 400
    assert client.get('/notifications/stream?timeout=nan', headers=headers).status_code == 400
    assert client.get('/notifications/stream?timeout=inf', headers=headers).status_code == 400
    assert client.get('/notifications/stream?timeout=-inf', headers=headers).status_code == 400
