from __future__ import annotations
from typing import Tuple
from flask import request, abort
from sqlalchemy.orm import Query
from gymfix.config.pagination import normalize_page, has_more


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    """Return (paged query, total, page, limit) using the request's page/limit args."""
    try:
        page, limit, offset = normalize_page(request.args.get('page'), request.args.get('limit'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, page, limit


def build_page_payload(key: str, rows: list, total: int, page: int, limit: int):
    return {
        key: rows,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'hasMore': has_more(page, limit, len(rows), total),
        }
    }
