import io
from tests.test_utils_seed import new_user
from tests.test_lifecycle_helpers import jwt_headers


def _upload(client, headers, data=b'\x89PNG fake', filename='proof.png', scope='confirmations'):
    return client.post('/media/photos', data={'file': (io.BytesIO(data), filename), 'scope': scope},
                       headers=headers, content_type='multipart/form-data')


def test_upload_and_serve_photo(client):
    user = new_user('uploader')
    headers = jwt_headers(user.id)
    resp = _upload(client, headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['object_key'].startswith('confirmations/')
    assert body['object_key'].endswith('.png')
    assert body['url'].endswith(body['object_key'])

    served = client.get(f"/media/{body['object_key']}")
    assert served.status_code == 200
    assert served.data == b'\x89PNG fake'


def test_upload_validation(client, app_context):
    headers = jwt_headers(new_user('uploader-bad').id)
    assert _upload(client, headers, scope='avatars').status_code == 400
    assert _upload(client, headers, filename='notes.txt').status_code == 400
    assert _upload(client, headers, data=b'').status_code == 400
    too_big = b'0' * (app_context.config['MAX_PHOTO_BYTES'] + 1)
    resp = _upload(client, headers, data=too_big)
    assert resp.status_code == 413
    assert resp.get_json()['error']['status'] == 413
    resp = client.post('/media/photos', data={'scope': 'reports'}, headers=headers, content_type='multipart/form-data')
    assert resp.status_code == 400


def test_upload_requires_auth_and_unknown_media_is_404(client):
    assert client.post('/media/photos', data={}).status_code == 401
    assert client.get('/media/confirmations/missing.png').status_code == 404
    assert client.get('/media/../secret.txt').status_code == 404


def test_media_base_url_override(client, app_context, monkeypatch):
    monkeypatch.setitem(app_context.config, 'MEDIA_BASE_URL', 'https://cdn.example.com/media/')
    resp = _upload(client, jwt_headers(new_user('uploader-cdn').id), scope='equipment')
    body = resp.get_json()
    assert body['url'] == f"https://cdn.example.com/media/{body['object_key']}"
