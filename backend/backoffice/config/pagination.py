DEFAULT_LIMIT = 50
MAX_LIMIT = 500
EXPORT_LIMIT = 5000


def normalize_pagination(limit_raw, offset_raw, max_limit: int = MAX_LIMIT):
    """Coerce raw query args into a bounded (limit, offset) pair.

    Raises ValueError for non-integer input; callers translate it into a 400.
    """
    try:
        limit = int(limit_raw) if limit_raw not in (None, '') else DEFAULT_LIMIT
        offset = int(offset_raw) if offset_raw not in (None, '') else 0
    except (TypeError, ValueError):
        raise ValueError('limit/offset must be int')
    return max(1, min(limit, max_limit)), max(0, offset)
