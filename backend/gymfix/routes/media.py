from __future__ import annotations
from flask import Blueprint, request, abort, g, send_from_directory
from gymfix.decorators.auth import require_auth
from gymfix.services.storage import SCOPES, media_root, store_photo

media_bp = Blueprint('media', __name__)


@media_bp.post('/photos')
@require_auth
def upload_photo():
    """Store a confirmation, report or equipment photo and return its public URL."""
    scope = request.form.get('scope') or 'confirmations'
    if scope not in SCOPES:
        abort(400, description=f"scope must be one of {', '.join(SCOPES)}")
    owner_ref = request.form.get('ref') or f'u{g.user.id}'
    object_key, url = store_photo(request.files.get('file'), scope, owner_ref)
    return {'object_key': object_key, 'url': url}, 201


@media_bp.get('/<path:object_key>')
def serve_media(object_key: str):
    # send_from_directory rejects keys escaping the media root
    return send_from_directory(media_root(), object_key)
