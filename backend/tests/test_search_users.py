import uuid
from tests.test_utils_seed import ensure_user, seed_world
from tests.test_lifecycle_helpers import jwt_headers


def test_search_is_case_insensitive_bounded_and_stable(client):
    world = seed_world()
    tag = uuid.uuid4().hex[:8]
    created = [ensure_user(f'{tag}-{i:02d}@Search.test'.lower()) for i in range(12)]
    headers = jwt_headers(world['approver'].id)

    first = client.get(f'/search-users?q={tag.upper()}', headers=headers)
    assert first.status_code == 200
    users = first.get_json()['users']
    assert len(users) == 10
    assert [u['id'] for u in users] == [u.id for u in created[:10]]
    assert all(set(u) == {'id', 'email', 'created_at'} for u in users)

    again = client.get(f'/search-users?q={tag}', headers=headers).get_json()
    assert again == first.get_json()


def test_short_query_returns_empty(client):
    world = seed_world()
    headers = jwt_headers(world['factory_owner'].id)
    assert client.get('/search-users?q=a', headers=headers).get_json() == {'users': []}
    assert client.get('/search-users', headers=headers).get_json() == {'users': []}


def test_search_is_limited_to_factory_deciders(client):
    world = seed_world()
    for key in ('factory_employee', 'gym_owner', 'outsider'):
        resp = client.get('/search-users?q=example', headers=jwt_headers(world[key].id))
        assert resp.status_code == 403, key


def test_like_wildcards_are_literal(client):
    world = seed_world()
    resp = client.get('/search-users?q=%25%25', headers=jwt_headers(world['approver'].id))
    assert resp.get_json() == {'users': []}
