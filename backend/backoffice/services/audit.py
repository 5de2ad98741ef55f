"""Audited insert / update / soft delete.

Each helper performs the primary write, commits it, then appends an ``audit_log``
row with before/after snapshots. The audit append is best-effort: a failure is
logged and rolled back on its own, the primary write stays committed and the
caller still gets the primary result.

The pre-read in ``update_audited`` / ``soft_delete_audited`` runs before the
UPDATE in the same session but not under a row lock, so a concurrent writer can
slip in between; ``old_values`` then reflects the row as last seen.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import inspect, select, update

from backoffice import get_db
from backoffice.errors import NotFoundError, ValidationError
from backoffice.models.audit import AuditLog
from backoffice.services.identity import Actor
from backoffice.utils.time import iso, utcnow

log = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor(id=None, name='Unknown User')
# Never copied into audit snapshots
REDACTED_COLUMNS = frozenset({'password_hash'})


def _json_value(value):
    if isinstance(value, (datetime, date)):
        return iso(value)
    if isinstance(value, Decimal):
        return str(value)
    return value


def row_snapshot(obj) -> Dict[str, Any]:
    """Column values of a mapped object as JSON-safe data."""
    mapper = inspect(obj).mapper
    return {
        attr.key: _json_value(getattr(obj, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in REDACTED_COLUMNS
    }


def _clean(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _json_value(v) for k, v in values.items() if k not in REDACTED_COLUMNS}


def _match_clauses(model, match: Mapping[str, Any]):
    if not match:
        raise ValidationError('match criteria required')
    columns = inspect(model).columns
    clauses = []
    for key, value in match.items():
        if key not in columns:
            raise ValidationError(f'unknown column {key}')
        clauses.append(getattr(model, key) == value)
    return clauses


def _write_audit(table_name: str, record_id, action: str, actor: Actor,
                 old_values: Optional[dict], new_values: Optional[dict]):
    session = get_db()
    try:
        session.add(AuditLog(
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            user_id=actor.id,
            user_name=actor.name or SYSTEM_ACTOR.name,
            old_values=old_values,
            new_values=new_values,
        ))
        session.commit()
    except Exception:
        session.rollback()
        log.exception('audit write failed for %s %s %s', action, table_name, record_id)


def insert_audited(model, values: Mapping[str, Any], actor: Optional[Actor] = None):
    """Insert a row stamped with creator/updater and return the persisted object."""
    actor = actor or SYSTEM_ACTOR
    session = get_db()
    obj = model(**dict(values))
    if hasattr(model, 'created_by'):
        obj.created_by = actor.id
    if hasattr(model, 'updated_by'):
        obj.updated_by = actor.id
    session.add(obj)
    session.commit()
    _write_audit(model.__tablename__, obj.id, AuditLog.ACTION_INSERT, actor, None, row_snapshot(obj))
    return obj


def update_audited(model, patch: Mapping[str, Any], match: Mapping[str, Any],
                   actor: Optional[Actor] = None, action: str = AuditLog.ACTION_UPDATE) -> int:
    """Apply ``patch`` to every row matching ``match``; returns the number of rows updated.

    One audit entry is appended per affected row with its pre-update snapshot and
    the full row as it stands after the patch.
    """
    actor = actor or SYSTEM_ACTOR
    session = get_db()
    clauses = _match_clauses(model, match)
    before = session.execute(
        select(model).where(*clauses).execution_options(populate_existing=True)
    ).scalars().all()
    snapshots = [(row.id, row_snapshot(row)) for row in before]
    values = dict(patch)
    if hasattr(model, 'updated_by'):
        values['updated_by'] = actor.id
        values['updated_at'] = utcnow()
    result = session.execute(
        update(model).where(*clauses).values(**values).execution_options(synchronize_session='fetch')
    )
    session.commit()
    changes = _clean(values)
    for record_id, old in snapshots:
        _write_audit(model.__tablename__, record_id, action, actor, old, {**old, **changes})
    return result.rowcount


def soft_delete_audited(model, match: Mapping[str, Any], actor: Optional[Actor] = None) -> int:
    """Mark matching rows inactive. Rows are never removed."""
    if not hasattr(model, 'is_active'):
        raise ValidationError(f'{model.__tablename__} does not support soft delete')
    return update_audited(model, {'is_active': False}, match, actor, action=AuditLog.ACTION_DELETE)


def delete_audited(model, match: Mapping[str, Any], actor: Optional[Actor] = None) -> int:
    """Hard delete for compensating records (payments). Business records use soft delete."""
    actor = actor or SYSTEM_ACTOR
    session = get_db()
    clauses = _match_clauses(model, match)
    rows = session.execute(select(model).where(*clauses)).scalars().all()
    snapshots = [(row.id, row_snapshot(row)) for row in rows]
    for row in rows:
        session.delete(row)
    session.commit()
    for record_id, old in snapshots:
        _write_audit(model.__tablename__, record_id, AuditLog.ACTION_DELETE, actor, old, None)
    return len(snapshots)


def get_or_404(model, record_id: int):
    row = get_db().execute(
        select(model).where(model.id == record_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(f'{model.__tablename__} {record_id} not found')
    return row


def audit_history(table_name: str, record_id, limit: int = 100) -> List[AuditLog]:
    """Audit entries for one record, newest first."""
    session = get_db()
    return session.execute(
        select(AuditLog)
        .where(AuditLog.table_name == table_name, AuditLog.record_id == str(record_id))
        .order_by(AuditLog.id.desc())
        .limit(limit)
    ).scalars().all()


def audit_json(entry: AuditLog) -> dict:
    return {
        'id': entry.id,
        'table_name': entry.table_name,
        'record_id': entry.record_id,
        'action': entry.action,
        'user_id': entry.user_id,
        'user_name': entry.user_name,
        'old_values': entry.old_values,
        'new_values': entry.new_values,
        'created_at': iso(entry.created_at),
    }
