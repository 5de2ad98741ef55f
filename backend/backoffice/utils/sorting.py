from __future__ import annotations
from typing import Dict, Optional
from flask import abort


def apply_multi_sort(query, sort_expr: Optional[str], allowed: Dict[str, object], tie_breaker):
    """Order a query by a comma-separated sort expression, e.g. ``-po_date,supplier_name``.

    A leading '-' sorts descending. Unknown keys are a 400. ``tie_breaker`` is always
    appended so paging over equal keys stays deterministic.
    """
    clauses = []
    for token in (t.strip() for t in (sort_expr or '').split(',')):
        if not token:
            continue
        key = token.lstrip('-')
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if token.startswith('-') else col.asc())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
