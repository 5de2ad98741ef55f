from __future__ import annotations
from typing import Tuple
from flask import request, abort
from sqlalchemy.orm import Query
from backoffice.config.pagination import normalize_pagination


def apply_pagination(q: Query, max_limit: int = None) -> Tuple[Query, int, int, int]:
    try:
        if max_limit:
            limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'), max_limit)
        else:
            limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def build_list_payload(rows: list, total: int, limit: int, offset: int, columns: list = None):
    payload = {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
    if columns is not None:
        # Columns the caller may see, in display order
        payload['columns'] = columns
    return payload


def project_columns(row: dict, columns: list, always: tuple = ('id',)) -> dict:
    """Drop keys the caller may not see; identifiers in ``always`` are kept for addressing."""
    allowed = set(columns) | set(always)
    return {k: v for k, v in row.items() if k in allowed}
