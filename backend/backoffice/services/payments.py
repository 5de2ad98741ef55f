"""Single and bulk purchase order payments.

A bulk payment is one ``bulk_payments`` row plus a ``bulk_payment_ref`` tag on every
order it covers. The parent insert and all tags are written in one database
transaction: either every order is tagged and the parent exists, or nothing is
left behind. An order carries at most one bulk reference; tagging only matches
untagged rows, so a concurrent batch that got there first makes this one fail.

Business failures come back as ``PaymentResult(success=False, error=...)``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from backoffice import get_db
from backoffice.errors import PaymentError
from backoffice.models.payment import BulkPayment, POPayment
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.services.audit import SYSTEM_ACTOR, delete_audited, insert_audited
from backoffice.services.branch_access import ALL_BRANCHES, apply_branch_filter
from backoffice.utils.time import iso

log = logging.getLogger(__name__)

BULK_PREFIX = 'BULK'
ZERO = Decimal('0')


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    error: Optional[str] = None
    record_id: Optional[int] = None


@dataclass
class PaymentRequest:
    po_id: int
    payment_date: date
    payment_amount: Decimal
    payment_method: Optional[str] = None
    payment_via: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class BulkPaymentRequest:
    bulk_reference: str
    total_amount: Decimal
    payment_date: date
    po_ids: List[int] = field(default_factory=list)
    payment_via: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------- finance view

def _paid_subquery():
    return (
        select(POPayment.po_id, func.coalesce(func.sum(POPayment.payment_amount), 0).label('paid'))
        .where(POPayment.status == POPayment.STATUS_COMPLETED)
        .group_by(POPayment.po_id)
        .subquery()
    )


def amount_paid(po_id: int) -> Decimal:
    paid = get_db().execute(
        select(func.coalesce(func.sum(POPayment.payment_amount), 0)).where(
            POPayment.po_id == po_id, POPayment.status == POPayment.STATUS_COMPLETED
        )
    ).scalar_one()
    return Decimal(str(paid))


def outstanding_balance(po: PurchaseOrder) -> Decimal:
    """Order total less completed payments, never below zero."""
    remaining = Decimal(str(po.total_amount or 0)) - amount_paid(po.id)
    return max(remaining, ZERO)


def finance_summary(scope=ALL_BRANCHES, only_outstanding: bool = False) -> List[Dict]:
    """Per-order totals, paid and outstanding amounts for active orders in ``scope``."""
    session = get_db()
    paid = _paid_subquery()
    q = (
        select(PurchaseOrder, func.coalesce(paid.c.paid, 0))
        .outerjoin(paid, paid.c.po_id == PurchaseOrder.id)
        .where(PurchaseOrder.is_active.is_(True))
        .order_by(PurchaseOrder.due_date.asc(), PurchaseOrder.id.asc())
    )
    q = apply_branch_filter(q, PurchaseOrder.branch_code, scope)
    rows = []
    for po, paid_amount in session.execute(q).all():
        total = Decimal(str(po.total_amount or 0))
        paid_amount = Decimal(str(paid_amount or 0))
        outstanding = max(total - paid_amount, ZERO)
        if only_outstanding and outstanding == ZERO:
            continue
        rows.append({
            'id': po.id,
            'po_number': po.po_number,
            'branch_code': po.branch_code,
            'supplier_name': po.supplier_name,
            'due_date': iso(po.due_date),
            'total_amount': str(total),
            'paid': str(paid_amount),
            'outstanding': str(outstanding),
            'bulk_payment_ref': po.bulk_payment_ref,
        })
    return rows


# ---------------------------------------------------------------- single payments

def execute_single_payment(payment: PaymentRequest, actor=None) -> PaymentResult:
    session = get_db()
    po = session.execute(
        select(PurchaseOrder).where(PurchaseOrder.id == payment.po_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if po is None or not po.is_active:
        return PaymentResult(False, 'purchase order not found or inactive')
    if po.bulk_payment_ref:
        return PaymentResult(False, f'purchase order {po.po_number} is part of bulk payment '
                                    f'{po.bulk_payment_ref} and cannot be paid individually')
    amount = Decimal(str(payment.payment_amount))
    if amount <= ZERO:
        return PaymentResult(False, 'payment amount must be positive')
    max_payable = outstanding_balance(po)
    if amount > max_payable:
        return PaymentResult(False, f'payment amount exceeds outstanding balance: {max_payable}')
    actor = actor or SYSTEM_ACTOR
    try:
        record = insert_audited(POPayment, {
            'po_id': po.id,
            'payment_date': payment.payment_date,
            'payment_amount': amount,
            'payment_method': payment.payment_method,
            'payment_via': payment.payment_via,
            'reference_number': payment.reference_number,
            'notes': payment.notes,
            'status': POPayment.STATUS_COMPLETED,
        }, actor)
    except SQLAlchemyError as e:
        session.rollback()
        log.exception('payment for purchase order %s failed', po.id)
        return PaymentResult(False, f'failed to save payment: {e.__class__.__name__}')
    log.info('payment %s recorded for %s (%s)', record.id, po.po_number, amount)
    return PaymentResult(True, record_id=record.id)


def rollback_single_payment(payment_id: int, actor=None) -> PaymentResult:
    try:
        removed = delete_audited(POPayment, {'id': payment_id}, actor)
    except SQLAlchemyError as e:
        get_db().rollback()
        log.exception('rollback of payment %s failed', payment_id)
        return PaymentResult(False, f'failed to roll back payment: {e.__class__.__name__}')
    if not removed:
        return PaymentResult(False, f'payment {payment_id} not found')
    log.info('payment %s rolled back', payment_id)
    return PaymentResult(True, record_id=payment_id)


# ---------------------------------------------------------------- bulk payments

def generate_bulk_reference(today: Optional[date] = None) -> str:
    """Next free ``BULK-YYYYMMDD-NNN`` reference for ``today``."""
    today = today or date.today()
    prefix = f'{BULK_PREFIX}-{today:%Y%m%d}-'
    existing = get_db().execute(
        select(BulkPayment.bulk_reference).where(BulkPayment.bulk_reference.like(f'{prefix}%'))
    ).scalars().all()
    seq = 0
    for ref in existing:
        tail = ref[len(prefix):]
        if tail.isdigit():
            seq = max(seq, int(tail))
    return f'{prefix}{seq + 1:03d}'


def _tag_order(session, po_id: int, reference: str):
    result = session.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == po_id, PurchaseOrder.bulk_payment_ref.is_(None))
        .values(bulk_payment_ref=reference)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PaymentError(f'purchase order {po_id} could not be tagged with {reference}')


def _validate_batch(session, batch: BulkPaymentRequest) -> Optional[str]:
    ids = list(dict.fromkeys(batch.po_ids))
    if not ids:
        return 'no purchase orders selected'
    if not batch.bulk_reference:
        return 'bulk reference required'
    pos = session.execute(
        select(PurchaseOrder).where(PurchaseOrder.id.in_(ids)).execution_options(populate_existing=True)
    ).scalars().all()
    if len(pos) != len(ids) or any(not po.is_active for po in pos):
        return 'some purchase orders were not found or are inactive'
    tagged = sorted((po for po in pos if po.bulk_payment_ref), key=lambda po: po.po_number)
    if tagged:
        numbers = ', '.join(po.po_number for po in tagged)
        return f'purchase orders already in another bulk payment: {numbers}'
    exists = session.execute(
        select(BulkPayment.id).where(BulkPayment.bulk_reference == batch.bulk_reference)
    ).first()
    if exists:
        return f'bulk reference {batch.bulk_reference} already exists, generate a new one'
    return None


def execute_bulk_payment(batch: BulkPaymentRequest, actor=None) -> PaymentResult:
    """Create the bulk record and tag every order, all or nothing."""
    actor = actor or SYSTEM_ACTOR
    session = get_db()
    error = _validate_batch(session, batch)
    if error:
        return PaymentResult(False, error)
    try:
        bulk = BulkPayment(
            bulk_reference=batch.bulk_reference,
            total_amount=Decimal(str(batch.total_amount)),
            payment_date=batch.payment_date,
            payment_via=batch.payment_via,
            payment_method=batch.payment_method,
            notes=batch.notes,
            created_by=actor.id,
        )
        session.add(bulk)
        session.flush()
        for po_id in dict.fromkeys(batch.po_ids):
            _tag_order(session, po_id, batch.bulk_reference)
        session.commit()
    except (SQLAlchemyError, PaymentError) as e:
        session.rollback()
        log.warning('bulk payment %s rolled back: %s', batch.bulk_reference, e)
        return PaymentResult(False, str(e) if isinstance(e, PaymentError) else
                             f'bulk payment failed: {e.__class__.__name__}')
    log.info('bulk payment %s covers %d orders (%s)', bulk.bulk_reference, len(set(batch.po_ids)), bulk.total_amount)
    return PaymentResult(True, record_id=bulk.id)


def rollback_bulk_payment(reference: str, actor=None) -> PaymentResult:
    """Untag every order carrying ``reference`` and delete the bulk record."""
    session = get_db()
    bulk = session.execute(
        select(BulkPayment).where(BulkPayment.bulk_reference == reference)
    ).scalar_one_or_none()
    if bulk is None:
        return PaymentResult(False, f'bulk payment {reference} not found')
    bulk_id = bulk.id
    try:
        result = session.execute(
            update(PurchaseOrder)
            .where(PurchaseOrder.bulk_payment_ref == reference)
            .values(bulk_payment_ref=None)
            .execution_options(synchronize_session='fetch')
        )
        session.delete(bulk)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.exception('rollback of bulk payment %s failed', reference)
        return PaymentResult(False, f'failed to roll back bulk payment: {e.__class__.__name__}')
    log.info('bulk payment %s rolled back, %d orders released by %s', reference, result.rowcount,
             (actor or SYSTEM_ACTOR).name)
    return PaymentResult(True, record_id=bulk_id)


def bulk_members(reference: str) -> Iterable[PurchaseOrder]:
    return get_db().execute(
        select(PurchaseOrder).where(PurchaseOrder.bulk_payment_ref == reference).order_by(PurchaseOrder.id)
    ).scalars().all()
