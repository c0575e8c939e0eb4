from __future__ import annotations
import os
import uuid
from typing import Optional

from flask import abort, current_app, url_for
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

# path prefixes an uploaded photo may live under
SCOPES = ('confirmations', 'reports', 'equipment')
ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp', 'gif', 'heic'}


def _extension(filename: str) -> str:
    name = secure_filename(filename or '')
    if '.' not in name:
        return ''
    return name.rsplit('.', 1)[1].lower()


def media_root() -> str:
    return os.path.abspath(current_app.config['MEDIA_ROOT'])


def public_url(object_key: str) -> str:
    base = current_app.config.get('MEDIA_BASE_URL') or ''
    if base:
        return f"{base.rstrip('/')}/{object_key}"
    return url_for('media.serve_media', object_key=object_key, _external=True)


def store_photo(upload: Optional[FileStorage], scope: str, owner_ref: Optional[str] = None) -> tuple[str, str]:
    """Save an uploaded photo under ``<scope>/`` and return (object_key, public_url)."""
    if scope not in SCOPES:
        abort(400, description=f"scope must be one of {', '.join(SCOPES)}")
    if upload is None or not upload.filename:
        abort(400, description='file required')
    ext = _extension(upload.filename)
    if ext not in ALLOWED_EXTENSIONS:
        abort(400, description='file must be an image')
    data = upload.read()
    if not data:
        abort(400, description='file is empty')
    if len(data) > current_app.config['MAX_PHOTO_BYTES']:
        abort(413, description=f"Photo must be at most {current_app.config['MAX_PHOTO_BYTES'] // 1024} KiB")
    prefix = secure_filename(owner_ref) if owner_ref else scope.rstrip('s')
    object_key = f"{scope}/{prefix}-{uuid.uuid4().hex}.{ext}"
    path = os.path.join(media_root(), *object_key.split('/'))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(data)
    current_app.logger.info('Stored photo %s (%d bytes)', object_key, len(data))
    return object_key, public_url(object_key)
