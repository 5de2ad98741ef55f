from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .authz import AuditStampMixin, Base
from .lockable import LockFieldsMixin


class PurchaseOrder(LockFieldsMixin, AuditStampMixin, Base):
    __tablename__ = 'purchase_orders'
    # Status constants
    STATUS_PENDING = 'PENDING'
    STATUS_ORDERED = 'ORDERED'
    STATUS_RECEIVED = 'RECEIVED'
    STATUS_CANCELLED = 'CANCELLED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_ORDERED, STATUS_RECEIVED, STATUS_CANCELLED)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    branch_code: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    po_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivered_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_term_id: Mapped[Optional[int]] = mapped_column(ForeignKey('payment_terms.id'), nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    bulk_payment_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500))


class PettyCashRequest(LockFieldsMixin, AuditStampMixin, Base):
    __tablename__ = 'petty_cash_requests'
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_SETTLED = 'SETTLED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_SETTLED)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    branch_code: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
