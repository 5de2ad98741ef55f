from flask import Blueprint, request, abort
from backoffice import get_db
from backoffice.constants.roles import ADMIN_TIER
from backoffice.decorators.auth import require_roles
from backoffice.models.audit import AuditLog
from backoffice.services.audit import audit_history, audit_json
from backoffice.utils.filters import apply_filters, equals
from backoffice.utils.listing import apply_pagination, build_list_payload

audit_bp = Blueprint('audit_log', __name__)


@audit_bp.get('')
@require_roles(*ADMIN_TIER)
def list_audit_entries():
    q = get_db().query(AuditLog)
    filter_specs = {
        'table_name': {'op': equals(AuditLog.table_name)},
        'record_id': {'op': equals(AuditLog.record_id)},
        'action': {'op': equals(AuditLog.action), 'validate': lambda v: v in (
            AuditLog.ACTION_INSERT, AuditLog.ACTION_UPDATE, AuditLog.ACTION_DELETE)},
        'user_id': {'coerce': int, 'op': equals(AuditLog.user_id)},
    }
    q = apply_filters(q, filter_specs, request.args).order_by(AuditLog.id.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    return build_list_payload([audit_json(e) for e in paged_q.all()], total, limit, offset)


@audit_bp.get('/<table_name>/<record_id>')
@require_roles(*ADMIN_TIER)
def record_history(table_name: str, record_id: str):
    entries = audit_history(table_name, record_id)
    if not entries:
        abort(404, description=f'no audit history for {table_name} {record_id}')
    return {'table_name': table_name, 'record_id': record_id, 'data': [audit_json(e) for e in entries]}
