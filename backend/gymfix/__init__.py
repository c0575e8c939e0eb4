from datetime import timedelta
from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _error_payload(status: int, title: str, detail: str):
    return {
        'error': {
            'status': status,
            'title': title,
            'detail': detail,
        }
    }


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(minutes=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_MINUTES', '60')))
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///gymfix.db')
    app.config['MEDIA_ROOT'] = os.getenv('MEDIA_ROOT', './data/media')
    app.config['MEDIA_BASE_URL'] = os.getenv('MEDIA_BASE_URL', '')
    app.config['MAX_PHOTO_BYTES'] = int(os.getenv('MAX_PHOTO_BYTES', str(5 * 1024 * 1024)))
    app.config['NOTIFICATION_STREAM_TIMEOUT'] = float(os.getenv('NOTIFICATION_STREAM_TIMEOUT', '25'))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    @jwt.unauthorized_loader
    def _missing_token(reason):
        return _error_payload(401, 'Unauthorized', reason), 401

    @jwt.invalid_token_loader
    def _invalid_token(reason):
        return _error_payload(401, 'Unauthorized', reason), 401

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):
        return _error_payload(401, 'Unauthorized', 'Token has expired'), 401

    from .routes.auth import auth_bp
    from .routes.factories import factories_bp
    from .routes.gyms import gyms_bp
    from .routes.equipment import equipment_bp
    from .routes.tickets import tickets_bp
    from .routes.notifications import notifications_bp
    from .routes.media import media_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(factories_bp)
    app.register_blueprint(gyms_bp)
    app.register_blueprint(equipment_bp, url_prefix='/equipment')
    app.register_blueprint(tickets_bp, url_prefix='/tickets')
    app.register_blueprint(notifications_bp, url_prefix='/notifications')
    app.register_blueprint(media_bp, url_prefix='/media')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_request
    def _release_session(exc):
        SessionLocal.remove()

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            return _error_payload(e.code, e.name, e.description), e.code
        app.logger.exception('Unhandled exception')
        return _error_payload(500, 'Internal Server Error', 'Unexpected error'), 500

    return app


def get_db():
    return SessionLocal()
