from datetime import date
from flask import Blueprint, request, abort
from sqlalchemy import select
from backoffice import get_db
from backoffice.constants.roles import PAGE_FINANCE, PAGE_PAYMENT_TERMS
from backoffice.decorators.auth import require_page
from backoffice.errors import PaymentError, PermissionDeniedError
from backoffice.models.payment import BulkPayment, PaymentTerm, POPayment
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.services.audit import get_or_404, insert_audited, soft_delete_audited, update_audited
from backoffice.services.branch_access import allowed_branches
from backoffice.services.identity import current_actor, load_current_user
from backoffice.services.payment_terms import (
    calculate_due_date, early_payment_discount, format_term, late_payment_penalty, next_payment_dates,
)
from backoffice.services.payments import (
    BulkPaymentRequest, PaymentRequest, bulk_members, execute_bulk_payment, execute_single_payment,
    finance_summary, generate_bulk_reference, outstanding_balance, rollback_bulk_payment, rollback_single_payment,
)
from backoffice.utils.log import sanitize_for_log
from backoffice.utils.time import iso
from backoffice.utils.validation import optional_date, optional_int, parse_amount, require_date, require_text
import logging

log = logging.getLogger(__name__)

finance_bp = Blueprint('finance', __name__)

TERM_FIELDS = (
    'term_name', 'calculation_type', 'days', 'payment_dates', 'payment_day_of_week',
    'early_payment_days', 'early_payment_discount', 'late_payment_penalty', 'grace_period_days',
)


def _scope():
    try:
        return allowed_branches(load_current_user())
    except PermissionDeniedError as e:
        abort(403, description=e.detail)


def _term_json(t: PaymentTerm):
    return {
        'id': t.id,
        'term_name': t.term_name,
        'calculation_type': t.calculation_type,
        'days': t.days,
        'payment_dates': t.payment_dates,
        'payment_day_of_week': t.payment_day_of_week,
        'early_payment_days': t.early_payment_days,
        'early_payment_discount': str(t.early_payment_discount) if t.early_payment_discount is not None else None,
        'late_payment_penalty': str(t.late_payment_penalty) if t.late_payment_penalty is not None else None,
        'grace_period_days': t.grace_period_days,
        'is_active': t.is_active,
        'display': format_term(t),
    }


def _non_negative_int(data, key):
    value = optional_int(data.get(key), key)
    if value is None:
        return 0
    if value < 0:
        abort(400, description=f'{key} must be >= 0')
    return value


def _term_values(data: dict, partial: bool = False) -> dict:
    """Parse payment term fields; ``partial`` only parses keys present in ``data``."""
    values = {}
    if not partial or 'term_name' in data:
        values['term_name'] = require_text(data, 'term_name', 64)
    if not partial or 'calculation_type' in data:
        kind = data.get('calculation_type')
        if kind not in PaymentTerm.ALL_TYPES:
            abort(400, description=f'calculation_type must be one of {", ".join(PaymentTerm.ALL_TYPES)}')
        values['calculation_type'] = kind
    for key in ('days', 'early_payment_days', 'grace_period_days'):
        if not partial or key in data:
            values[key] = _non_negative_int(data, key)
    if not partial or 'payment_dates' in data:
        raw = data.get('payment_dates')
        if raw is not None:
            if not isinstance(raw, list) or not all(
                isinstance(d, int) and (d == PaymentTerm.END_OF_MONTH or 1 <= d <= 31) for d in raw
            ):
                abort(400, description='payment_dates must be a list of days 1-31 or 999 (end of month)')
            raw = sorted(set(raw))
        values['payment_dates'] = raw
    if not partial or 'payment_day_of_week' in data:
        dow = optional_int(data.get('payment_day_of_week'), 'payment_day_of_week')
        if dow is not None and not 0 <= dow <= 6:
            abort(400, description='payment_day_of_week must be 0 (Sunday) to 6 (Saturday)')
        values['payment_day_of_week'] = dow
    for key in ('early_payment_discount', 'late_payment_penalty'):
        if not partial or key in data:
            values[key] = parse_amount(data.get(key) or 0, key)
    return values


def _require_term_config(values: dict):
    kind = values.get('calculation_type')
    if kind == PaymentTerm.FIXED_DATES and not values.get('payment_dates'):
        abort(400, description='fixed_dates terms need payment_dates')
    if kind == PaymentTerm.WEEKLY and values.get('payment_day_of_week') is None:
        abort(400, description='weekly terms need payment_day_of_week')


# --- Payment terms ---

@finance_bp.get('/payment-terms')
@require_page(PAGE_PAYMENT_TERMS)
def list_payment_terms():
    q = select(PaymentTerm).order_by(PaymentTerm.term_name.asc())
    if request.args.get('include_inactive') != '1':
        q = q.where(PaymentTerm.is_active.is_(True))
    return {'data': [_term_json(t) for t in get_db().execute(q).scalars().all()]}


@finance_bp.post('/payment-terms')
@require_page(PAGE_PAYMENT_TERMS, 'create')
def create_payment_term():
    values = _term_values(request.get_json(silent=True) or {})
    _require_term_config(values)
    if get_db().execute(select(PaymentTerm.id).where(PaymentTerm.term_name == values['term_name'])).first():
        abort(400, description=f'term {values["term_name"]} already exists')
    term = insert_audited(PaymentTerm, {**values, 'is_active': True}, current_actor())
    return _term_json(term), 201


@finance_bp.patch('/payment-terms/<int:term_id>')
@require_page(PAGE_PAYMENT_TERMS, 'edit')
def update_payment_term(term_id: int):
    term = get_or_404(PaymentTerm, term_id)
    patch = _term_values(request.get_json(silent=True) or {}, partial=True)
    if not patch:
        abort(400, description='no updatable fields supplied')
    merged = {k: getattr(term, k) for k in TERM_FIELDS}
    merged.update(patch)
    _require_term_config(merged)
    update_audited(PaymentTerm, patch, {'id': term_id}, current_actor())
    return _term_json(get_or_404(PaymentTerm, term_id))


@finance_bp.delete('/payment-terms/<int:term_id>')
@require_page(PAGE_PAYMENT_TERMS, 'delete')
def delete_payment_term(term_id: int):
    get_or_404(PaymentTerm, term_id)
    soft_delete_audited(PaymentTerm, {'id': term_id}, current_actor())
    return {'id': term_id, 'is_active': False}


@finance_bp.post('/payment-terms/preview')
@require_page(PAGE_PAYMENT_TERMS)
def preview_due_date():
    """Due date for a stored term (``term_id``) or an unsaved term definition."""
    data = request.get_json(silent=True) or {}
    base = require_date(data.get('base_date'), 'base_date')
    term_id = optional_int(data.get('term_id'), 'term_id')
    if term_id is not None:
        term = get_or_404(PaymentTerm, term_id)
    else:
        term = PaymentTerm(**_term_values({'term_name': 'preview', **data}))
    result = calculate_due_date(base, term)
    count = min(optional_int(data.get('count'), 'count') or 0, 24)
    return {
        'base_date': iso(base),
        'due_date': iso(result.due_date),
        'description': result.description,
        'display': format_term(term),
        'schedule': [iso(d) for d in next_payment_dates(term, base, count)],
    }


# --- Outstanding balances ---

@finance_bp.get('/outstanding')
@require_page(PAGE_FINANCE)
def list_outstanding():
    rows = finance_summary(_scope(), only_outstanding=request.args.get('all') != '1')
    return {'data': rows}


def _scoped_po(po_id: int) -> PurchaseOrder:
    po = get_or_404(PurchaseOrder, po_id)
    if not po.is_active or po.branch_code not in _scope():
        abort(404)
    return po


@finance_bp.get('/purchase-orders/<int:po_id>/settlement')
@require_page(PAGE_FINANCE)
def settlement_quote(po_id: int):
    """Outstanding amount adjusted by early discount or late penalty for a payment date."""
    po = _scoped_po(po_id)
    pay_on = optional_date(request.args.get('payment_date'), 'payment_date') or date.today()
    outstanding = outstanding_balance(po)
    quote = {'id': po.id, 'po_number': po.po_number, 'outstanding': str(outstanding),
             'payment_date': iso(pay_on), 'due_date': iso(po.due_date)}
    term = get_db().get(PaymentTerm, po.payment_term_id) if po.payment_term_id else None
    if term is None or po.due_date is None:
        quote['payable'] = str(outstanding)
        return quote
    discount = early_payment_discount(outstanding, pay_on, po.due_date, term.early_payment_days, term.early_payment_discount)
    penalty = late_payment_penalty(outstanding, pay_on, po.due_date, term.late_payment_penalty, term.grace_period_days)
    quote.update({
        'early_discount': str(discount.discount_amount),
        'late_penalty': str(penalty.penalty_amount),
        'days_late': penalty.days_late,
        'payable': str(discount.final_amount + penalty.penalty_amount),
    })
    return quote


# --- Single payments ---

def _payment_json(p: POPayment):
    return {
        'id': p.id,
        'po_id': p.po_id,
        'payment_date': iso(p.payment_date),
        'payment_amount': str(p.payment_amount),
        'payment_method': p.payment_method,
        'payment_via': p.payment_via,
        'reference_number': p.reference_number,
        'notes': p.notes,
        'status': p.status,
    }


@finance_bp.get('/purchase-orders/<int:po_id>/payments')
@require_page(PAGE_FINANCE)
def list_po_payments(po_id: int):
    po = _scoped_po(po_id)
    rows = get_db().execute(
        select(POPayment).where(POPayment.po_id == po.id).order_by(POPayment.payment_date, POPayment.id)
    ).scalars().all()
    return {'data': [_payment_json(p) for p in rows], 'outstanding': str(outstanding_balance(po))}


@finance_bp.post('/payments')
@require_page(PAGE_FINANCE, 'create')
def create_payment():
    data = request.get_json(silent=True) or {}
    po_id = optional_int(data.get('po_id'), 'po_id')
    if po_id is None:
        abort(400, description='po_id required')
    _scoped_po(po_id)
    result = execute_single_payment(PaymentRequest(
        po_id=po_id,
        payment_date=require_date(data.get('payment_date'), 'payment_date'),
        payment_amount=parse_amount(data.get('payment_amount'), 'payment_amount', allow_zero=False),
        payment_method=data.get('payment_method'),
        payment_via=data.get('payment_via'),
        reference_number=data.get('reference_number'),
        notes=data.get('notes'),
    ), current_actor())
    if not result.success:
        raise PaymentError(result.error)
    return _payment_json(get_or_404(POPayment, result.record_id)), 201


@finance_bp.post('/payments/<int:payment_id>/rollback')
@require_page(PAGE_FINANCE, 'delete')
def rollback_payment(payment_id: int):
    payment = get_or_404(POPayment, payment_id)
    _scoped_po(payment.po_id)
    result = rollback_single_payment(payment_id, current_actor())
    if not result.success:
        raise PaymentError(result.error)
    return {'id': payment_id, 'rolled_back': True}


# --- Bulk payments ---

@finance_bp.get('/bulk-payments/next-reference')
@require_page(PAGE_FINANCE)
def next_bulk_reference():
    return {'bulk_reference': generate_bulk_reference()}


@finance_bp.post('/bulk-payments')
@require_page(PAGE_FINANCE, 'create')
def create_bulk_payment():
    data = request.get_json(silent=True) or {}
    raw_ids = data.get('po_ids')
    if not isinstance(raw_ids, list) or not raw_ids:
        abort(400, description='po_ids must be a non-empty list')
    po_ids = [optional_int(v, 'po_ids') for v in raw_ids]
    if any(v is None for v in po_ids):
        abort(400, description='po_ids must be integers')
    scope = _scope()
    for po_id in po_ids:
        po = get_db().get(PurchaseOrder, po_id)
        if po is not None and po.branch_code not in scope:
            abort(404)
    batch = BulkPaymentRequest(
        bulk_reference=data.get('bulk_reference') or generate_bulk_reference(),
        total_amount=parse_amount(data.get('total_amount'), 'total_amount', allow_zero=False),
        payment_date=require_date(data.get('payment_date'), 'payment_date'),
        po_ids=po_ids,
        payment_via=data.get('payment_via'),
        payment_method=data.get('payment_method'),
        notes=data.get('notes'),
    )
    result = execute_bulk_payment(batch, current_actor())
    if not result.success:
        log.info('bulk payment %s rejected: %s', sanitize_for_log(batch.bulk_reference), result.error)
        raise PaymentError(result.error)
    return {'id': result.record_id, 'bulk_reference': batch.bulk_reference, 'po_ids': sorted(set(po_ids))}, 201


def _scoped_bulk(reference: str):
    """Bulk payment and its orders; 404 unless every order sits in the caller's branches."""
    bulk = get_db().execute(
        select(BulkPayment).where(BulkPayment.bulk_reference == reference)
    ).scalar_one_or_none()
    if bulk is None:
        abort(404)
    members = bulk_members(reference)
    scope = _scope()
    if any(po.branch_code not in scope for po in members):
        abort(404)
    return bulk, members


@finance_bp.get('/bulk-payments/<reference>')
@require_page(PAGE_FINANCE)
def get_bulk_payment(reference: str):
    bulk, members = _scoped_bulk(reference)
    return {
        'id': bulk.id,
        'bulk_reference': bulk.bulk_reference,
        'total_amount': str(bulk.total_amount),
        'payment_date': iso(bulk.payment_date),
        'payment_via': bulk.payment_via,
        'payment_method': bulk.payment_method,
        'notes': bulk.notes,
        'purchase_orders': [{'id': po.id, 'po_number': po.po_number} for po in members],
    }


@finance_bp.post('/bulk-payments/<reference>/rollback')
@require_page(PAGE_FINANCE, 'delete')
def rollback_bulk(reference: str):
    _scoped_bulk(reference)
    result = rollback_bulk_payment(reference, current_actor())
    if not result.success:
        raise PaymentError(result.error)
    return {'bulk_reference': reference, 'rolled_back': True}
