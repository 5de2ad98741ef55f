from datetime import date
from flask import Blueprint, Response, request, abort
from sqlalchemy import select
from backoffice import get_db
from backoffice.config.pagination import EXPORT_LIMIT
from backoffice.constants.roles import ADMIN_TIER, PAGE_PURCHASE_ORDERS, ROLE_FINANCE
from backoffice.decorators.auth import require_page, require_roles
from backoffice.errors import LockConflictError, PermissionDeniedError
from backoffice.models.payment import PaymentTerm
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.routes.locking import register_lock_routes
from backoffice.services.audit import get_or_404, insert_audited, soft_delete_audited, update_audited
from backoffice.services.branch_access import allowed_branches, apply_branch_filter
from backoffice.services.identity import current_actor, current_role, current_user_id, load_current_user
from backoffice.services.locks import po_locks
from backoffice.services.payment_terms import po_due_date, update_po_due_date, batch_update_po_due_dates
from backoffice.services.permissions import visible_columns
from backoffice.utils.export import rows_to_csv
from backoffice.utils.filters import apply_filters, contains, equals
from backoffice.utils.fsm import TransitionValidator
from backoffice.utils.listing import apply_pagination, build_list_payload, project_columns
from backoffice.utils.sorting import apply_multi_sort
from backoffice.utils.time import iso
from backoffice.utils.validation import (
    optional_date, optional_int, parse_amount, require_date, require_text, validate_status,
)

po_bp = Blueprint('po', __name__)

PO_FSM = TransitionValidator({
    PurchaseOrder.STATUS_PENDING: {PurchaseOrder.STATUS_ORDERED, PurchaseOrder.STATUS_CANCELLED},
    PurchaseOrder.STATUS_ORDERED: {PurchaseOrder.STATUS_RECEIVED, PurchaseOrder.STATUS_CANCELLED},
    PurchaseOrder.STATUS_RECEIVED: set(),
    PurchaseOrder.STATUS_CANCELLED: set(),
})

# Display order of columns subject to column-level permissions
PO_COLUMNS = [
    'po_number', 'branch_code', 'supplier_name', 'status', 'po_date', 'delivered_at',
    'payment_term_id', 'due_date', 'total_amount', 'bulk_payment_ref', 'notes',
    'is_locked', 'locked_by_name', 'updated_at',
]
# Changing any of these moves the due date
DUE_DATE_INPUTS = ('po_date', 'delivered_at', 'payment_term_id')


def _po_json(po: PurchaseOrder):
    locked = bool(po.is_locked) and not po_locks.is_stale(po)
    return {
        'id': po.id,
        'po_number': po.po_number,
        'branch_code': po.branch_code,
        'supplier_name': po.supplier_name,
        'status': po.status,
        'po_date': iso(po.po_date),
        'delivered_at': iso(po.delivered_at),
        'payment_term_id': po.payment_term_id,
        'due_date': iso(po.due_date),
        'total_amount': str(po.total_amount) if po.total_amount is not None else None,
        'bulk_payment_ref': po.bulk_payment_ref,
        'notes': po.notes,
        'is_locked': locked,
        'locked_by_name': po.locked_by_name if locked else None,
        'updated_at': iso(po.updated_at),
    }


def _caller():
    try:
        return load_current_user()
    except PermissionDeniedError as e:
        abort(403, description=e.detail)


def _columns():
    return visible_columns(current_role(), PAGE_PURCHASE_ORDERS, PO_COLUMNS)


def _scoped_po(po_id: int) -> PurchaseOrder:
    """Active order within the caller's branches; anything else is a 404."""
    po = get_or_404(PurchaseOrder, po_id)
    if not po.is_active or po.branch_code not in allowed_branches(_caller()):
        abort(404)
    return po


def _assert_not_locked_by_other(po_id: int):
    status = po_locks.check(po_id)
    if status.locked and status.holder_id != current_user_id():
        raise LockConflictError(f'purchase order is being edited by {status.holder_name}',
                                holder_name=status.holder_name)


def _assert_term(term_id):
    if term_id is None:
        return
    term = get_db().get(PaymentTerm, term_id)
    if term is None or not term.is_active:
        abort(400, description=f'payment term {term_id} not found')


def _filtered_query():
    session = get_db()
    q = session.query(PurchaseOrder).filter(PurchaseOrder.is_active.is_(True))
    q = apply_branch_filter(q, PurchaseOrder.branch_code, allowed_branches(_caller()))
    filter_specs = {
        'po_number': {'op': contains(PurchaseOrder.po_number)},
        'supplier_name': {'op': contains(PurchaseOrder.supplier_name)},
        'status': {'op': equals(PurchaseOrder.status), 'validate': lambda v: v in PurchaseOrder.ALL_STATUSES},
        'branch_code': {'op': equals(PurchaseOrder.branch_code)},
        'payment_term_id': {'coerce': int, 'op': equals(PurchaseOrder.payment_term_id)},
        'bulk_payment_ref': {'op': equals(PurchaseOrder.bulk_payment_ref)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {
        'po_number': PurchaseOrder.po_number,
        'po_date': PurchaseOrder.po_date,
        'supplier_name': PurchaseOrder.supplier_name,
        'status': PurchaseOrder.status,
        'total_amount': PurchaseOrder.total_amount,
        'due_date': PurchaseOrder.due_date,
        'updated_at': PurchaseOrder.updated_at,
        'id': PurchaseOrder.id,
    }
    return apply_multi_sort(q, request.args.get('sort'), allowed, PurchaseOrder.id)


@po_bp.get('/purchase-orders')
@require_page(PAGE_PURCHASE_ORDERS)
def list_purchase_orders():
    columns = _columns()
    paged_q, total, limit, offset = apply_pagination(_filtered_query())
    rows = [project_columns(_po_json(po), columns) for po in paged_q.all()]
    return build_list_payload(rows, total, limit, offset, columns)


@po_bp.get('/purchase-orders/export.csv')
@require_page(PAGE_PURCHASE_ORDERS)
def export_purchase_orders():
    columns = _columns()
    rows = [_po_json(po) for po in _filtered_query().limit(EXPORT_LIMIT).all()]
    body = rows_to_csv(rows, ['id'] + columns)
    return Response(body, mimetype='text/csv',
                    headers={'Content-Disposition': 'attachment; filename=purchase_orders.csv'})


@po_bp.post('/purchase-orders')
@require_page(PAGE_PURCHASE_ORDERS, 'create')
def create_purchase_order():
    data = request.get_json(silent=True) or {}
    po_number = require_text(data, 'po_number', 64)
    branch_code = require_text(data, 'branch_code', 32)
    supplier_name = require_text(data, 'supplier_name', 128)
    if branch_code not in allowed_branches(_caller()):
        abort(403, description=f'No access to branch {branch_code}')
    values = {
        'po_number': po_number,
        'branch_code': branch_code,
        'supplier_name': supplier_name,
        'po_date': require_date(data.get('po_date'), 'po_date'),
        'delivered_at': optional_date(data.get('delivered_at'), 'delivered_at'),
        'payment_term_id': optional_int(data.get('payment_term_id'), 'payment_term_id'),
        'total_amount': parse_amount(data.get('total_amount', 0), 'total_amount'),
        'notes': data.get('notes'),
        'status': PurchaseOrder.STATUS_PENDING,
    }
    _assert_term(values['payment_term_id'])
    if get_db().execute(select(PurchaseOrder.id).where(PurchaseOrder.po_number == po_number)).first():
        abort(400, description=f'po_number {po_number} already exists')
    values['due_date'] = po_due_date(PurchaseOrder(**values)).due_date
    po = insert_audited(PurchaseOrder, values, current_actor())
    return _po_json(po), 201


@po_bp.get('/purchase-orders/<int:po_id>')
@require_page(PAGE_PURCHASE_ORDERS)
def get_purchase_order(po_id: int):
    return project_columns(_po_json(_scoped_po(po_id)), _columns())


@po_bp.patch('/purchase-orders/<int:po_id>')
@require_page(PAGE_PURCHASE_ORDERS, 'edit')
def update_purchase_order(po_id: int):
    data = request.get_json(silent=True) or {}
    po = _scoped_po(po_id)
    _assert_not_locked_by_other(po_id)
    patch = {}
    if 'supplier_name' in data:
        patch['supplier_name'] = require_text(data, 'supplier_name', 128)
    if 'po_date' in data:
        patch['po_date'] = require_date(data.get('po_date'), 'po_date')
    if 'delivered_at' in data:
        patch['delivered_at'] = optional_date(data.get('delivered_at'), 'delivered_at')
    if 'payment_term_id' in data:
        patch['payment_term_id'] = optional_int(data.get('payment_term_id'), 'payment_term_id')
        _assert_term(patch['payment_term_id'])
    if 'total_amount' in data:
        if po.bulk_payment_ref:
            abort(400, description=f'total_amount is fixed while in bulk payment {po.bulk_payment_ref}')
        patch['total_amount'] = parse_amount(data.get('total_amount'), 'total_amount')
    if 'notes' in data:
        patch['notes'] = data.get('notes')
    if not patch:
        abort(400, description='no updatable fields supplied')
    update_audited(PurchaseOrder, patch, {'id': po_id}, current_actor())
    if any(k in patch for k in DUE_DATE_INPUTS):
        update_po_due_date(po_id, current_actor())
    return _po_json(get_or_404(PurchaseOrder, po_id))


@po_bp.post('/purchase-orders/<int:po_id>/transition')
@require_page(PAGE_PURCHASE_ORDERS, 'edit')
def transition_purchase_order(po_id: int):
    data = request.get_json(silent=True) or {}
    target = validate_status(data.get('status'), PurchaseOrder.ALL_STATUSES)
    po = _scoped_po(po_id)
    _assert_not_locked_by_other(po_id)
    if target == PurchaseOrder.STATUS_RECEIVED:
        abort(400, description='use the receive endpoint to mark an order received')
    PO_FSM.assert_can_transition(po.status, target)
    update_audited(PurchaseOrder, {'status': target}, {'id': po_id}, current_actor())
    return _po_json(get_or_404(PurchaseOrder, po_id))


@po_bp.post('/purchase-orders/<int:po_id>/receive')
@require_page(PAGE_PURCHASE_ORDERS, 'edit')
def receive_purchase_order(po_id: int):
    """Mark the order received; delivery-based terms get their due date now."""
    data = request.get_json(silent=True) or {}
    po = _scoped_po(po_id)
    _assert_not_locked_by_other(po_id)
    PO_FSM.assert_can_transition(po.status, PurchaseOrder.STATUS_RECEIVED)
    delivered_at = optional_date(data.get('delivered_at'), 'delivered_at') or date.today()
    update_audited(PurchaseOrder, {'status': PurchaseOrder.STATUS_RECEIVED, 'delivered_at': delivered_at},
                   {'id': po_id}, current_actor())
    update_po_due_date(po_id, current_actor())
    return _po_json(get_or_404(PurchaseOrder, po_id))


@po_bp.delete('/purchase-orders/<int:po_id>')
@require_page(PAGE_PURCHASE_ORDERS, 'delete')
def delete_purchase_order(po_id: int):
    po = _scoped_po(po_id)
    _assert_not_locked_by_other(po_id)
    if po.bulk_payment_ref:
        abort(400, description=f'purchase order is part of bulk payment {po.bulk_payment_ref}')
    soft_delete_audited(PurchaseOrder, {'id': po_id}, current_actor())
    return {'id': po_id, 'is_active': False}


@po_bp.post('/purchase-orders/<int:po_id>/due-date')
@require_page(PAGE_PURCHASE_ORDERS, 'edit')
def recalculate_due_date(po_id: int):
    _scoped_po(po_id)
    result = update_po_due_date(po_id, current_actor())
    return {'id': po_id, 'due_date': iso(result.due_date), 'description': result.description}


@po_bp.post('/purchase-orders/due-dates')
@require_roles(*ADMIN_TIER, ROLE_FINANCE)
def recalculate_all_due_dates():
    success, failed = batch_update_po_due_dates(current_actor())
    return {'success': success, 'failed': failed}


register_lock_routes(po_bp, po_locks, '/purchase-orders', PAGE_PURCHASE_ORDERS)
