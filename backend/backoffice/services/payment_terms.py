"""Payment term arithmetic: due dates, display text, early discount and late penalty.

``calculate_due_date`` is pure and never raises; an unusable term yields
``DueDate(None, reason)``. Weekdays follow the stored convention 0 = Sunday
through 6 = Saturday.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import select

from backoffice import get_db
from backoffice.models.payment import PaymentTerm
from backoffice.models.purchase_order import PurchaseOrder
from backoffice.services.audit import get_or_404, update_audited

log = logging.getLogger(__name__)

END_OF_MONTH = PaymentTerm.END_OF_MONTH
WEEKDAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')
CENT = Decimal('0.01')


class DueDate(NamedTuple):
    due_date: Optional[date]
    description: str


class EarlyPaymentDiscount(NamedTuple):
    discount_amount: Decimal
    final_amount: Decimal
    is_eligible: bool


class LatePaymentPenalty(NamedTuple):
    penalty_amount: Decimal
    days_late: int
    is_late: bool


def _weekday(d: date) -> int:
    # date.weekday() is Monday = 0
    return (d.weekday() + 1) % 7


def _last_day(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _next_month(year: int, month: int) -> Tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def _anchor_date(year: int, month: int, anchor: int) -> date:
    last = _last_day(year, month)
    if anchor == END_OF_MONTH:
        return date(year, month, last)
    return date(year, month, min(anchor, last))


def _valid_anchors(raw) -> List[int]:
    anchors = []
    for value in raw or ():
        try:
            anchor = int(value)
        except (TypeError, ValueError):
            continue
        if anchor == END_OF_MONTH or 1 <= anchor <= 31:
            anchors.append(anchor)
    return anchors


def _anchor_label(anchor: int) -> str:
    return 'end of month' if anchor == END_OF_MONTH else f'day {anchor}'


def calculate_due_date(base: date, term) -> DueDate:
    kind = getattr(term, 'calculation_type', None)
    if kind in (PaymentTerm.FROM_INVOICE, PaymentTerm.FROM_DELIVERY):
        days = int(getattr(term, 'days', None) or 0)
        origin = 'invoice' if kind == PaymentTerm.FROM_INVOICE else 'delivery'
        return DueDate(base + timedelta(days=days), f'{days} days from {origin}')

    if kind == PaymentTerm.FIXED_DATES:
        anchors = _valid_anchors(getattr(term, 'payment_dates', None))
        if not anchors:
            return DueDate(None, 'fixed dates term has no payment dates')
        following = _next_month(base.year, base.month)
        best = None
        for anchor in anchors:
            candidate = _anchor_date(base.year, base.month, anchor)
            if candidate <= base:
                candidate = _anchor_date(following[0], following[1], anchor)
            if best is None or candidate < best:
                best = candidate
        labels = ', '.join(_anchor_label(a) for a in anchors)
        return DueDate(best, f'next fixed payment date ({labels})')

    if kind == PaymentTerm.WEEKLY:
        target = getattr(term, 'payment_day_of_week', None)
        if target is None or not 0 <= int(target) <= 6:
            return DueDate(None, 'weekly term has no payment day')
        delta = (int(target) - _weekday(base)) % 7 or 7
        return DueDate(base + timedelta(days=delta), f'every {WEEKDAY_NAMES[int(target)]}')

    return DueDate(None, f'unknown calculation type {kind!r}')


def format_term(term) -> str:
    kind = getattr(term, 'calculation_type', None)
    days = int(getattr(term, 'days', None) or 0)
    if kind == PaymentTerm.FROM_INVOICE:
        return f'{days} days from invoice'
    if kind == PaymentTerm.FROM_DELIVERY:
        return f'{days} days from delivery'
    if kind == PaymentTerm.FIXED_DATES:
        anchors = _valid_anchors(getattr(term, 'payment_dates', None))
        if not anchors:
            return 'Fixed dates'
        return ', '.join('End of month' if a == END_OF_MONTH else f'Day {a}' for a in anchors)
    if kind == PaymentTerm.WEEKLY:
        target = getattr(term, 'payment_day_of_week', None)
        return f'Every {WEEKDAY_NAMES[int(target or 0) % 7]}'
    return f'{days} days'


def early_payment_discount(amount, payment_date: date, due_date: date,
                           early_days: int, discount_pct) -> EarlyPaymentDiscount:
    """Discount applies when paying on or before ``due_date - early_days``."""
    amount = Decimal(str(amount))
    eligible = payment_date <= due_date - timedelta(days=int(early_days or 0))
    discount = (amount * Decimal(str(discount_pct or 0)) / 100).quantize(CENT, ROUND_HALF_UP) if eligible else Decimal('0.00')
    return EarlyPaymentDiscount(discount, amount - discount, eligible)


def late_payment_penalty(amount, payment_date: date, due_date: date,
                         penalty_pct, grace_days: int = 0) -> LatePaymentPenalty:
    """Penalty accrues per 30-day month after the grace period, pro rata."""
    amount = Decimal(str(amount))
    grace_end = due_date + timedelta(days=int(grace_days or 0))
    if payment_date <= grace_end:
        return LatePaymentPenalty(Decimal('0.00'), 0, False)
    days_late = (payment_date - grace_end).days
    penalty = amount * Decimal(str(penalty_pct or 0)) / 100 * Decimal(days_late) / 30
    return LatePaymentPenalty(penalty.quantize(CENT, ROUND_HALF_UP), days_late, True)


def _add_month(d: date) -> date:
    year, month = _next_month(d.year, d.month)
    return date(year, month, min(d.day, _last_day(year, month)))


def next_payment_dates(term, start: date, count: int = 12) -> List[date]:
    """Upcoming due dates for cash-flow planning."""
    dates: List[date] = []
    current = start
    for _ in range(max(0, count)):
        due = calculate_due_date(current, term).due_date
        if due is None:
            break
        dates.append(due)
        if term.calculation_type in (PaymentTerm.FIXED_DATES, PaymentTerm.WEEKLY):
            current = due + timedelta(days=1)
        else:
            current = _add_month(current)
    return dates


# ---------------------------------------------------------------- purchase orders

def po_due_date(po: PurchaseOrder) -> DueDate:
    if po.payment_term_id is None:
        return DueDate(None, 'payment term not set')
    term = get_db().get(PaymentTerm, po.payment_term_id)
    if term is None:
        return DueDate(None, 'payment term not found')
    if term.calculation_type == PaymentTerm.FROM_DELIVERY:
        if po.delivered_at is None:
            return DueDate(None, 'waiting for delivery')
        return calculate_due_date(po.delivered_at, term)
    return calculate_due_date(po.po_date, term)


def update_po_due_date(po_id: int, actor=None) -> DueDate:
    """Recompute and store one order's due date; the order is left untouched when none results."""
    po = get_or_404(PurchaseOrder, po_id)
    result = po_due_date(po)
    if result.due_date is not None and result.due_date != po.due_date:
        update_audited(PurchaseOrder, {'due_date': result.due_date}, {'id': po_id}, actor)
    return result


def batch_update_po_due_dates(actor=None) -> Tuple[int, int]:
    """Recompute due dates for every active order with a term. Returns (success, failed)."""
    session = get_db()
    ids = session.execute(
        select(PurchaseOrder.id).where(
            PurchaseOrder.is_active.is_(True), PurchaseOrder.payment_term_id.is_not(None)
        ).order_by(PurchaseOrder.id)
    ).scalars().all()
    success = failed = 0
    for po_id in ids:
        result = update_po_due_date(po_id, actor)
        if result.due_date is None:
            failed += 1
            log.info('purchase order %s: no due date (%s)', po_id, result.description)
        else:
            success += 1
    log.info('due date batch: %d updated, %d failed', success, failed)
    return success, failed
