from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .authz import AuditStampMixin, Base


class PaymentTerm(AuditStampMixin, Base):
    __tablename__ = 'payment_terms'
    FROM_INVOICE = 'from_invoice'
    FROM_DELIVERY = 'from_delivery'
    FIXED_DATES = 'fixed_dates'
    WEEKLY = 'weekly'
    ALL_TYPES = (FROM_INVOICE, FROM_DELIVERY, FIXED_DATES, WEEKLY)
    # payment_dates sentinel meaning "last day of the month"
    END_OF_MONTH = 999
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    term_name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    calculation_type: Mapped[str] = mapped_column(String(32), nullable=False, default=FROM_INVOICE)
    days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_dates: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # 0 = Sunday ... 6 = Saturday
    payment_day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    early_payment_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    early_payment_discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    late_payment_penalty: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BulkPayment(Base):
    __tablename__ = 'bulk_payments'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bulk_reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_via: Mapped[Optional[str]] = mapped_column(String(64))
    payment_method: Mapped[Optional[str]] = mapped_column(String(64))
    notes: Mapped[Optional[str]] = mapped_column(String(500))
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class POPayment(Base):
    __tablename__ = 'po_payments'
    STATUS_COMPLETED = 'completed'
    STATUS_PENDING = 'pending'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    po_id: Mapped[int] = mapped_column(ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(64))
    payment_via: Mapped[Optional[str]] = mapped_column(String(64))
    reference_number: Mapped[Optional[str]] = mapped_column(String(64))
    notes: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_COMPLETED)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
