# Overview: Stock Ledger - guarded on-hand balance plus append-only movement history.

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

import sqlalchemy as sa
from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RECEIVE,
    SALE_MOVEMENT_TYPES,
)
from ..time_utils import utcnow
from ..validation import FieldErrors, coerce_amount, coerce_int, clean_text
from .concurrency import lock_for_update, run_in_transaction
from .errors import InsufficientStockError, NotFoundError
"""
Stock Ledger invariants (authoritative):

- Product.quantity_on_hand never goes negative for a tracked product.
- Decrements are one conditional UPDATE:
      UPDATE products SET quantity_on_hand = quantity_on_hand - n
      WHERE id = :id AND quantity_on_hand >= n
  A row count of 0 means another session took the stock first; the caller's
  unit of work must abort. No read-then-write window exists.
- Restores are unconditional increments.
- Every change appends a StockMovement, so quantity_on_hand always equals
  the sum of a product's movements.
- Products with track_stock = False are never decremented or restored.

The *_stock helpers below flush but do not commit; they run inside the
caller's transaction. receive_stock/adjust_stock are standalone units.
"""


def get_product(product_id: int, *, require_active: bool = False, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise NotFoundError(f"Product {product_id} is inactive", details={"product_id": product_id})
    return product


def get_quantity_on_hand(product_id: int) -> int:
    qty = db.session.query(Product.quantity_on_hand).filter(Product.id == product_id).scalar()
    if qty is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return int(qty)


def ledger_balance(product_id: int) -> int:
    """Quantity re-derived from the movement history."""
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def check_availability(requested: Iterable[tuple[int, int]]) -> None:
    """
    Advisory pre-check. Quantities for the same product are summed.

    Raises InsufficientStockError listing every short product. Passing this
    check does not reserve anything; decrement_stock is authoritative.
    """
    wanted: "OrderedDict[int, int]" = OrderedDict()
    for product_id, quantity in requested:
        wanted[product_id] = wanted.get(product_id, 0) + quantity

    shortages = []
    for product_id, quantity in wanted.items():
        product = get_product(product_id)
        if not product.track_stock:
            continue
        if product.quantity_on_hand < quantity:
            shortages.append({
                "product_id": product_id,
                "name": product.name,
                "requested": quantity,
                "available": product.quantity_on_hand,
            })
    if shortages:
        names = ", ".join(s["name"] for s in shortages)
        raise InsufficientStockError(f"Insufficient stock for: {names}", details={"shortages": shortages})


def _append_movement(
    product: Product,
    *,
    movement_type: str,
    quantity_delta: int,
    sale_id: int | None = None,
    staff_id: int | None = None,
    unit_cost=None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        unit_cost=unit_cost,
        sale_id=sale_id,
        staff_id=staff_id,
        note=note[:255] if note else None,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def decrement_stock(
    product_id: int,
    quantity: int,
    *,
    movement_type: str,
    sale_id: int | None = None,
    staff_id: int | None = None,
    note: str | None = None,
) -> StockMovement | None:
    """
    Atomically remove quantity from stock.

    Returns the movement, or None for untracked products.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    product = get_product(product_id)
    if not product.track_stock:
        return None

    result = db.session.execute(
        sa.update(Product)
        .where(Product.id == product_id, Product.quantity_on_hand >= quantity)
        .values(quantity_on_hand=Product.quantity_on_hand - quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(product, attribute_names=["quantity_on_hand"])
    if result.rowcount == 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}",
            details={
                "shortages": [{
                    "product_id": product_id,
                    "name": product.name,
                    "requested": quantity,
                    "available": product.quantity_on_hand,
                }]
            },
        )

    return _append_movement(
        product,
        movement_type=movement_type,
        quantity_delta=-quantity,
        sale_id=sale_id,
        staff_id=staff_id,
        unit_cost=product.unit_cost,
        note=note,
    )


def restore_stock(
    product_id: int,
    quantity: int,
    *,
    movement_type: str,
    sale_id: int | None = None,
    staff_id: int | None = None,
    note: str | None = None,
) -> StockMovement | None:
    """Return quantity to stock. Returns None for untracked products."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    product = get_product(product_id)
    if not product.track_stock:
        return None

    db.session.execute(
        sa.update(Product)
        .where(Product.id == product_id)
        .values(quantity_on_hand=Product.quantity_on_hand + quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(product, attribute_names=["quantity_on_hand"])

    return _append_movement(
        product,
        movement_type=movement_type,
        quantity_delta=quantity,
        sale_id=sale_id,
        staff_id=staff_id,
        unit_cost=product.unit_cost,
        note=note,
    )


def net_sale_quantity(sale_id: int, product_id: int) -> int:
    """
    Units of product currently held out of stock by a sale.

    Sums the commit decrement and every edit/void movement tagged with the
    sale, so edits between commit and void are accounted for.
    """
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .filter(
            StockMovement.sale_id == sale_id,
            StockMovement.product_id == product_id,
            StockMovement.movement_type.in_(SALE_MOVEMENT_TYPES),
        )
        .scalar()
    )
    return -int(total or 0)


def receive_stock(product_id, quantity, *, unit_cost=None, staff_id: int | None = None, note: str | None = None) -> StockMovement:
    """Book a delivery into stock. Commits."""
    errors = FieldErrors()
    quantity = coerce_int(quantity, "quantity", errors, minimum=1)
    cost = coerce_amount(unit_cost, "unit_cost", errors, required=False)
    note = clean_text(note, "note", errors)
    errors.raise_if_any()

    def _op():
        product = get_product(product_id, require_active=True, lock=True)
        if not product.track_stock:
            product.track_stock = True
        movement = restore_stock(product.id, quantity, movement_type=MOVEMENT_RECEIVE, staff_id=staff_id, note=note)
        if cost is not None:
            movement.unit_cost = cost
            product.unit_cost = cost
        return movement

    return run_in_transaction(_op)


def adjust_stock(product_id, quantity_delta, *, reason, staff_id: int | None = None) -> StockMovement:
    """Manual correction (count variance, damage). Commits."""
    errors = FieldErrors()
    delta = coerce_int(quantity_delta, "quantity_delta", errors)
    reason = clean_text(reason, "reason", errors, required=True)
    if delta == 0:
        errors.add("quantity_delta", "quantity_delta cannot be 0")
    errors.raise_if_any()

    def _op():
        if delta > 0:
            return restore_stock(product_id, delta, movement_type=MOVEMENT_ADJUSTMENT, staff_id=staff_id, note=reason)
        return decrement_stock(product_id, -delta, movement_type=MOVEMENT_ADJUSTMENT, staff_id=staff_id, note=reason)

    return run_in_transaction(_op)


def list_movements(product_id: int, *, sale_id: int | None = None, limit: int = 200) -> list[StockMovement]:
    get_product(product_id)
    q = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
    if sale_id is not None:
        q = q.filter(StockMovement.sale_id == sale_id)
    return q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).limit(limit).all()


def list_low_stock() -> list[Product]:
    """Active tracked products at or below their reorder level."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.track_stock.is_(True),
            Product.reorder_level.isnot(None),
            Product.quantity_on_hand <= Product.reorder_level,
        )
        .order_by(Product.quantity_on_hand.asc(), Product.id.asc())
        .all()
    )
