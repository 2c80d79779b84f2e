# Overview: Commission Calculator plus per-sale and per-staff override helpers.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func

from ..extensions import db
from ..models import CommissionOverride, CommissionPayment, Sale, Staff
from ..models.staff import BASIS_PROFIT, VALID_COMMISSION_BASES
from ..money import HUNDRED, ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import FieldErrors, ValidationError, clean_text, coerce_amount, require_reason
from . import permission_service, staff_service
from .audit_service import append_sale_event
from .concurrency import check_version, lock_for_update, run_in_transaction
from .errors import NotFoundError, SaleStateError
from .sales_service import get_sale
from .settings_service import CommissionSettings, get_commission_settings


@dataclass(frozen=True)
class CommissionBreakdown:
    rate: Decimal
    basis: str
    revenue: Decimal
    profit: Decimal
    calculated: Decimal
    has_override: bool
    current: Decimal
    enabled: bool
    override_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "rate": str(self.rate),
            "basis": self.basis,
            "revenue": str(quantize_money(self.revenue)),
            "profit": str(quantize_money(self.profit)),
            "calculated": str(quantize_money(self.calculated)),
            "has_override": self.has_override,
            "current": str(quantize_money(self.current)),
            "override_reason": self.override_reason,
        }


def calculate_commission(
    lines: Iterable,
    config: CommissionSettings,
    staff_override: CommissionOverride | None = None,
    sale_override=None,
    *,
    override_reason: str | None = None,
    is_voided: bool = False,
) -> CommissionBreakdown:
    """
    Commission for one sale.

    rate/basis come from the staff override field by field, falling back to
    the store config. A per-sale override replaces the reported value while
    calculated is kept for comparison. Disabled config or a voided sale
    reports zero.
    """
    rate = config.default_rate
    basis = config.basis
    if staff_override is not None:
        if staff_override.commission_rate is not None:
            rate = to_decimal(staff_override.commission_rate)
        if staff_override.commission_basis is not None:
            basis = staff_override.commission_basis

    lines = list(lines)
    revenue = sum((to_decimal(l.line_revenue) for l in lines), ZERO)
    cost = sum((to_decimal(l.line_cost) for l in lines), ZERO)
    profit = revenue - cost

    if not config.enabled or is_voided:
        return CommissionBreakdown(
            rate=rate, basis=basis, revenue=revenue, profit=profit,
            calculated=ZERO, has_override=False, current=ZERO, enabled=config.enabled,
        )

    base = profit if basis == BASIS_PROFIT else revenue
    calculated = base * rate / HUNDRED
    has_override = sale_override is not None
    current = to_decimal(sale_override) if has_override else calculated
    return CommissionBreakdown(
        rate=rate,
        basis=basis,
        revenue=revenue,
        profit=profit,
        calculated=calculated,
        has_override=has_override,
        current=current,
        enabled=True,
        override_reason=override_reason if has_override else None,
    )


def _staff_override(staff_id: int) -> CommissionOverride | None:
    return db.session.query(CommissionOverride).filter_by(staff_id=staff_id).first()


def commission_for_sale(sale: Sale, config: CommissionSettings | None = None) -> CommissionBreakdown:
    return calculate_commission(
        sale.lines,
        config or get_commission_settings(),
        _staff_override(sale.staff_id),
        sale.commission_override,
        override_reason=sale.commission_override_reason,
        is_voided=sale.is_voided,
    )


def get_sale_commission(sale_id: int) -> CommissionBreakdown:
    return commission_for_sale(get_sale(sale_id))


def set_commission_override(sale_id: int, amount, *, reason: str, actor: Staff, expected_version: int | None = None) -> CommissionBreakdown:
    permission_service.require_permission(actor, "OVERRIDE_COMMISSION", resource=f"sale:{sale_id}")
    errors = FieldErrors()
    value = coerce_amount(amount, "amount", errors)
    errors.raise_if_any("Invalid commission override")
    reason = require_reason(reason)

    def _op():
        sale = get_sale(sale_id, lock=True)
        if sale.is_voided:
            raise SaleStateError(f"Sale {sale_id} is voided", details={"sale_id": sale_id})
        check_version(sale, expected_version)

        previous = sale.commission_override
        sale.commission_override = quantize_money(value)
        sale.commission_override_reason = reason[:255]
        breakdown = commission_for_sale(sale)
        append_sale_event(
            sale_id=sale.id,
            event_type="sale.commission_overridden",
            actor_staff_id=actor.id,
            note=reason,
            payload={
                "previous": str(previous) if previous is not None else None,
                "override": str(sale.commission_override),
                "calculated": str(quantize_money(breakdown.calculated)),
            },
        )
        return breakdown

    return run_in_transaction(_op)


def clear_commission_override(sale_id: int, *, actor: Staff, reason: str | None = None) -> CommissionBreakdown:
    """Drop the per-sale override; the reported value reverts to a fresh calculation."""
    permission_service.require_permission(actor, "OVERRIDE_COMMISSION", resource=f"sale:{sale_id}")

    def _op():
        sale = get_sale(sale_id, lock=True)
        if sale.commission_override is None:
            return commission_for_sale(sale)
        previous = sale.commission_override
        sale.commission_override = None
        sale.commission_override_reason = None
        breakdown = commission_for_sale(sale)
        append_sale_event(
            sale_id=sale.id,
            event_type="sale.commission_override_cleared",
            actor_staff_id=actor.id,
            note=reason,
            payload={"previous": str(previous), "calculated": str(quantize_money(breakdown.calculated))},
        )
        return breakdown

    return run_in_transaction(_op)


@dataclass(frozen=True)
class PeriodTotals:
    sale_count: int
    overridden_count: int
    revenue: Decimal
    profit: Decimal
    commission: Decimal
    rate: Decimal
    basis: str
    enabled: bool


def _period_totals(staff_id: int, start: datetime | None, end: datetime | None) -> PeriodTotals:
    q = db.session.query(Sale).filter(Sale.staff_id == staff_id, Sale.is_voided.is_(False))
    if start is not None:
        q = q.filter(Sale.sold_at >= start)
    if end is not None:
        q = q.filter(Sale.sold_at <= end)
    sales = q.order_by(Sale.sold_at.asc(), Sale.id.asc()).all()

    config = get_commission_settings()
    override = _staff_override(staff_id)
    terms = calculate_commission([], config, override)
    revenue = profit = commission = ZERO
    overridden = 0
    for sale in sales:
        b = calculate_commission(
            sale.lines, config, override, sale.commission_override,
            override_reason=sale.commission_override_reason,
        )
        revenue += b.revenue
        profit += b.profit
        commission += b.current
        overridden += 1 if b.has_override else 0

    return PeriodTotals(
        sale_count=len(sales),
        overridden_count=overridden,
        revenue=quantize_money(revenue),
        profit=quantize_money(profit),
        commission=quantize_money(commission),
        rate=terms.rate,
        basis=terms.basis,
        enabled=config.enabled,
    )


def staff_commission_summary(staff_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Per-period totals for one staff member. Voided sales are left out."""
    staff = staff_service.get_staff(staff_id)
    totals = _period_totals(staff_id, start, end)
    return {
        "staff_id": staff_id,
        "staff_name": staff.display_name,
        "sale_count": totals.sale_count,
        "overridden_count": totals.overridden_count,
        "revenue": str(totals.revenue),
        "profit": str(totals.profit),
        "commission": str(totals.commission),
        "rate": str(totals.rate),
        "basis": totals.basis,
        "enabled": totals.enabled,
    }


# =============================================================================
# COMMISSION PAYMENTS
# =============================================================================

def _period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    return datetime.combine(period_start, time.min), datetime.combine(period_end, time.max)


def period_paid_total(staff_id: int, period_start: date, period_end: date) -> Decimal:
    """Commission already paid for exactly this period."""
    paid = (
        db.session.query(func.coalesce(func.sum(CommissionPayment.commission_amount), 0))
        .filter(
            CommissionPayment.staff_id == staff_id,
            CommissionPayment.period_start == period_start,
            CommissionPayment.period_end == period_end,
        )
        .scalar()
    )
    return quantize_money(to_decimal(paid))


def record_commission_payment(
    staff_id: int,
    period_start: date,
    period_end: date,
    *,
    actor: Staff,
    method: str | None,
    amount=None,
    notes: str | None = None,
) -> CommissionPayment:
    """
    Pay a staff member's commission for a period.

    The period figures are recomputed here rather than taken from the
    caller. amount defaults to what is still outstanding for the period
    (commission minus earlier payments for the same dates) and may not
    exceed it. Nothing outstanding is a SaleStateError.
    """
    permission_service.require_permission(actor, "PAY_COMMISSION", resource=f"staff:{staff_id}")

    errors = FieldErrors()
    method = clean_text(method, "method", errors, required=True, max_length=32)
    notes = clean_text(notes, "notes", errors, max_length=None)
    value = coerce_amount(amount, "amount", errors, required=False, positive=True)
    if period_start is None:
        errors.add("period_start", "period_start is required")
    if period_end is None:
        errors.add("period_end", "period_end is required")
    if period_start is not None and period_end is not None and period_end < period_start:
        errors.add("period_end", "period_end must not be before period_start")
    errors.raise_if_any("Invalid commission payment")

    def _op():
        # Staff row lock: one payment at a time per staff member.
        staff = lock_for_update(db.session.query(Staff).filter_by(id=staff_id)).first()
        if staff is None:
            raise NotFoundError(f"Staff {staff_id} not found", details={"staff_id": staff_id})

        totals = _period_totals(staff_id, *_period_bounds(period_start, period_end))
        already_paid = period_paid_total(staff_id, period_start, period_end)
        outstanding = totals.commission - already_paid
        details = {
            "staff_id": staff_id,
            "commission": str(totals.commission),
            "already_paid": str(already_paid),
            "outstanding": str(outstanding),
        }
        if outstanding <= 0:
            raise SaleStateError("No commission outstanding for this period", details=details)

        paid = outstanding if value is None else value
        if paid > outstanding:
            raise ValidationError(
                "Invalid commission payment",
                fields={"amount": f"amount cannot exceed the outstanding {outstanding}"},
            )

        payment = CommissionPayment(
            staff_id=staff_id,
            period_start=period_start,
            period_end=period_end,
            sales_count=totals.sale_count,
            revenue_total=totals.revenue,
            profit_total=totals.profit,
            commission_rate=totals.rate,
            commission_basis=totals.basis,
            commission_amount=paid,
            payment_method=method,
            notes=notes,
            paid_by=actor.id,
            paid_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()
        return payment

    return run_in_transaction(_op)


def list_commission_payments(
    staff_id: int | None = None,
    period_start: date | None = None,
    period_end: date | None = None,
) -> list[CommissionPayment]:
    """Newest first. With both dates, payments whose period overlaps them."""
    q = db.session.query(CommissionPayment)
    if staff_id is not None:
        q = q.filter(CommissionPayment.staff_id == staff_id)
    if period_start is not None and period_end is not None:
        q = q.filter(CommissionPayment.period_start <= period_end, CommissionPayment.period_end >= period_start)
    return q.order_by(CommissionPayment.paid_at.desc(), CommissionPayment.id.desc()).all()


def set_staff_override(staff_id: int, *, actor: Staff, rate=None, basis: str | None = None) -> CommissionOverride | None:
    """
    Set per-staff terms. Passing neither rate nor basis removes the override.
    """
    permission_service.require_permission(actor, "MANAGE_SETTINGS", resource=f"staff:{staff_id}")

    errors = FieldErrors()
    value = coerce_amount(rate, "rate", errors, required=False, maximum=HUNDRED)
    if basis is not None and basis not in VALID_COMMISSION_BASES:
        errors.add("basis", f"basis must be one of: {', '.join(VALID_COMMISSION_BASES)}")
    errors.raise_if_any("Invalid commission override")

    staff_service.get_staff(staff_id)

    def _op():
        row = _staff_override(staff_id)
        if value is None and basis is None:
            if row is not None:
                db.session.delete(row)
            return None
        if row is None:
            row = CommissionOverride(staff_id=staff_id)
            db.session.add(row)
        row.commission_rate = value
        row.commission_basis = basis
        db.session.flush()
        return row

    return run_in_transaction(_op)
