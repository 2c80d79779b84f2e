# Overview: Cash drawer ledger per location (signed movements, balance = sum).

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import CashDrawerMovement, Location
from ..models.cash import (
    CASH_ADJUSTMENT,
    CASH_DEPOSIT,
    CASH_FLOAT_SET,
    CASH_SALE_IN,
    CASH_VOID_REFUND,
    CASH_WITHDRAWAL,
)
from ..money import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import FieldErrors, clean_text, coerce_amount
from .concurrency import run_in_transaction
from .errors import NotFoundError


MANUAL_MOVEMENT_TYPES = (CASH_DEPOSIT, CASH_WITHDRAWAL, CASH_FLOAT_SET, CASH_ADJUSTMENT)


def get_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError(f"Location {location_id} not found", details={"location_id": location_id})
    return location


def get_balance(location_id: int) -> Decimal:
    get_location(location_id)
    total = (
        db.session.query(func.coalesce(func.sum(CashDrawerMovement.amount), 0))
        .filter(CashDrawerMovement.location_id == location_id)
        .scalar()
    )
    return quantize_money(total or ZERO)


def _append(location_id: int, movement_type: str, amount: Decimal, *, staff_id=None, sale_id=None, notes=None) -> CashDrawerMovement:
    movement = CashDrawerMovement(
        location_id=location_id,
        movement_type=movement_type,
        amount=quantize_money(amount),
        reference_sale_id=sale_id,
        staff_id=staff_id,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def record_sale_cash_in(*, location_id: int, sale_id: int, amount, staff_id: int | None = None) -> CashDrawerMovement:
    """Cash taken for a sale. Runs inside the caller's transaction."""
    return _append(
        location_id,
        CASH_SALE_IN,
        to_decimal(amount),
        staff_id=staff_id,
        sale_id=sale_id,
        notes=f"Sale #{sale_id}",
    )


def sale_cash_net(sale_id: int) -> Decimal:
    """Net cash the drawer currently holds for a sale (cash-ins minus refunds)."""
    total = (
        db.session.query(func.coalesce(func.sum(CashDrawerMovement.amount), 0))
        .filter(
            CashDrawerMovement.reference_sale_id == sale_id,
            CashDrawerMovement.movement_type.in_((CASH_SALE_IN, CASH_VOID_REFUND)),
        )
        .scalar()
    )
    return to_decimal(total or ZERO)


def record_void_refund(*, sale_id: int, staff_id: int | None = None) -> CashDrawerMovement | None:
    """
    Hand back the cash a voided sale brought in, at the drawer that took it.

    Runs inside the caller's transaction. Returns None when the sale moved
    no cash.
    """
    held = sale_cash_net(sale_id)
    if held <= 0:
        return None
    cash_in = (
        db.session.query(CashDrawerMovement)
        .filter_by(reference_sale_id=sale_id, movement_type=CASH_SALE_IN)
        .order_by(CashDrawerMovement.id.asc())
        .first()
    )
    return _append(
        cash_in.location_id,
        CASH_VOID_REFUND,
        -held,
        staff_id=staff_id,
        sale_id=sale_id,
        notes=f"Void of sale #{sale_id}",
    )


def record_movement(*, location_id: int, movement_type: str, amount, staff_id: int | None = None, notes: str | None = None) -> CashDrawerMovement:
    """
    Manual drawer movement. Commits.

    deposit/withdrawal take a positive amount (withdrawals are stored
    negative and need a reason). float_set takes the target balance and
    records the difference. adjustment takes a signed amount and a reason.
    """
    errors = FieldErrors()
    if movement_type not in MANUAL_MOVEMENT_TYPES:
        errors.add("movement_type", f"movement_type must be one of: {', '.join(MANUAL_MOVEMENT_TYPES)}")
    notes = clean_text(notes, "notes", errors, required=movement_type in (CASH_WITHDRAWAL, CASH_ADJUSTMENT))

    if movement_type == CASH_ADJUSTMENT:
        try:
            value = to_decimal(amount)
        except ValueError:
            value = None
            errors.add("amount", "amount must be a number")
        if value is not None and (not value.is_finite() or value == 0):
            errors.add("amount", "amount must be a non-zero number")
    else:
        value = coerce_amount(amount, "amount", errors, positive=movement_type != CASH_FLOAT_SET)
    errors.raise_if_any()

    def _op():
        get_location(location_id)
        if movement_type == CASH_WITHDRAWAL:
            signed = -value
        elif movement_type == CASH_FLOAT_SET:
            signed = value - get_balance(location_id)
        else:
            signed = value
        return _append(location_id, movement_type, signed, staff_id=staff_id, notes=notes)

    return run_in_transaction(_op)


def history(location_id: int, *, start: datetime | None = None, end: datetime | None = None, limit: int = 500) -> list[CashDrawerMovement]:
    get_location(location_id)
    q = db.session.query(CashDrawerMovement).filter(CashDrawerMovement.location_id == location_id)
    if start is not None:
        q = q.filter(CashDrawerMovement.created_at >= start)
    if end is not None:
        q = q.filter(CashDrawerMovement.created_at <= end)
    return q.order_by(CashDrawerMovement.created_at.desc(), CashDrawerMovement.id.desc()).limit(limit).all()


def create_location(name: str) -> Location:
    errors = FieldErrors()
    name = clean_text(name, "name", errors, required=True, max_length=128)
    errors.raise_if_any()
    location = Location(name=name, is_active=True)
    db.session.add(location)
    db.session.commit()
    return location
