from __future__ import annotations
"""Request payload validation helpers.

Each helper returns the parsed value for inline use or aborts with a 400 carrying
the field name, so handlers read as a sequence of field parses.
"""
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional
from flask import abort

from backoffice.utils.time import parse_date


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    if new_status not in allowed:
        abort(400, description=f"{field_name} invalid")
    return new_status


def require_text(data: dict, field_name: str, max_len: int = 255) -> str:
    value = str(data.get(field_name) or '').strip()
    if not value:
        abort(400, description=f'{field_name} required')
    if len(value) > max_len:
        abort(400, description=f'{field_name} too long (max {max_len})')
    return value


def parse_amount(raw, field_name: str = 'amount', allow_zero: bool = True) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        abort(400, description=f'{field_name} must be a number')
    if not value.is_finite() or value < 0 or (value == 0 and not allow_zero):
        abort(400, description=f'{field_name} must be {"non-negative" if allow_zero else "positive"}')
    return value.quantize(Decimal('0.01'))


def require_date(raw, field_name: str) -> date:
    try:
        return parse_date(raw, field_name)
    except ValueError as e:
        abort(400, description=str(e))


def optional_date(raw, field_name: str) -> Optional[date]:
    if raw in (None, ''):
        return None
    return require_date(raw, field_name)


def optional_int(raw, field_name: str) -> Optional[int]:
    if raw in (None, ''):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        abort(400, description=f'{field_name} must be int')


__all__ = ['validate_status', 'require_text', 'parse_amount', 'require_date', 'optional_date', 'optional_int']
