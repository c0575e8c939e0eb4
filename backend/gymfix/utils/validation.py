from __future__ import annotations
"""Request payload helpers shared by the route modules.

All helpers abort with 400 so handlers can use them inline.
"""
from typing import Any, Iterable, Optional
from flask import abort, request


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(data: dict, *names: str) -> None:
    missing = [n for n in names if _blank(data.get(n))]
    if missing:
        abort(400, description=f"{', '.join(missing)} required")


def validate_choice(value: Any, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Return value if it is one of ``allowed``, else abort with 400."""
    if value not in tuple(allowed):
        abort(400, description=f"{field_name} invalid")
    return value


def optional_int(value: Any, field_name: str) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        abort(400, description=f"{field_name} must be int")


def json_body() -> dict:
    """The JSON object sent with the request; no body reads as empty."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='JSON object body required')
    return data


def optional_str(value: Any, field_name: str) -> Optional[str]:
    """Stripped text or None; non-string values abort with 400."""
    if value is None:
        return None
    if not isinstance(value, str):
        abort(400, description=f"{field_name} must be a string")
    return value.strip() or None


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

__all__ = ['require_fields', 'validate_choice', 'optional_int', 'clean_text', 'json_body', 'optional_str']
