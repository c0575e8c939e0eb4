import os, sys, pytest
# Ensure the backend directory is on path so 'gymfix' can be imported without installing
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from gymfix import create_app, get_db
# Importing the models package registers every table before create_all
from gymfix.models import Base


@pytest.fixture(scope='session', autouse=True)
def app_instance(tmp_path_factory):
    media_root = tmp_path_factory.mktemp('media')
    app = create_app({
        'TESTING': True,
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret',
        'MEDIA_ROOT': str(media_root),
        'MEDIA_BASE_URL': '',
        'MAX_PHOTO_BYTES': 64 * 1024,
        'NOTIFICATION_STREAM_TIMEOUT': 0.2,
    })
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def client(app_context):
    return app_context.test_client()
