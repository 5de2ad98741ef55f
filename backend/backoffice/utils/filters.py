from __future__ import annotations
from typing import Any, Callable, Dict, Mapping
from flask import abort


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Mapping[str, Any]):
    """Apply optional query-string filters.

    specs: {param: {'op': callable(query, value) -> query, 'coerce': callable, 'validate': callable}}
    Absent or empty params are skipped; coercion or validation failures are a 400.
    """
    for name, meta in specs.items():
        raw = params.get(name)
        if raw is None or raw == '':
            continue
        value = raw
        coerce = meta.get('coerce')
        if coerce is not None:
            try:
                value = coerce(raw)
            except (TypeError, ValueError):
                abort(400, description=f'{name} invalid')
        validate = meta.get('validate')
        if validate is not None and not validate(value):
            abort(400, description=f'{name} invalid')
        query = meta['op'](query, value)
    return query


def contains(column) -> Callable:
    """Case-insensitive substring filter op for ``column``."""
    return lambda q, v: q.filter(column.ilike(f'%{v}%'))


def equals(column) -> Callable:
    return lambda q, v: q.filter(column == v)
