DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def normalize_page(page_raw, limit_raw):
    """Coerce raw ``page``/``limit`` query values into a bounded (page, limit, offset) triple."""
    try:
        page = int(page_raw) if page_raw not in (None, '') else 1
        limit = int(limit_raw) if limit_raw not in (None, '') else DEFAULT_LIMIT
    except ValueError:
        raise ValueError('page/limit must be int')
    page = max(1, page)
    limit = max(1, min(limit, MAX_LIMIT))
    return page, limit, (page - 1) * limit


def has_more(page: int, limit: int, returned: int, total: int) -> bool:
    return (page - 1) * limit + returned < total
