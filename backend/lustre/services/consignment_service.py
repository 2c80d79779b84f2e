# Overview: Consignment Settlement Linker - payouts owed to consignors for sold items.

from __future__ import annotations

from collections import OrderedDict

from sqlalchemy import func

from ..extensions import db
from ..models import ConsignmentSettlement, Product, Sale, Supplier
from ..money import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import FieldErrors, clean_text
from . import permission_service
from .audit_service import append_sale_event
from .concurrency import lock_for_update, run_in_transaction
from .errors import NotFoundError, SaleStateError
"""
Settlement invariants:

- At most one settlement per (product, sale); the unique constraint backs up
  the existence check below.
- payout_amount is the line cost: quantity x the unit_cost snapshot, so a
  later catalog cost change never reaches it.
- Until the settlement is paid, edits carry through: payout_amount follows
  the line quantity and sale_price the line revenue.
- paid_at is set exactly once and never cleared.
- Unpaid settlements of voided sales are owed to nobody: they stay on
  record but are left out of unsettled lists and balances.
"""


def _group_consignment_lines(lines) -> "OrderedDict[int, dict]":
    grouped: "OrderedDict[int, dict]" = OrderedDict()
    for line in lines:
        product = line.product or db.session.get(Product, line.product_id)
        if product is None or not product.is_consignment:
            continue
        entry = grouped.setdefault(
            product.id,
            {"supplier_id": product.consignment_supplier_id, "sale_price": ZERO, "payout": ZERO},
        )
        entry["sale_price"] += line.line_revenue
        entry["payout"] += line.line_cost
    return grouped


def link_settlements_for_sale(sale: Sale, lines) -> list[ConsignmentSettlement]:
    """
    Create the settlement rows for a sale's consignment lines.

    Runs inside the caller's transaction. Lines for the same product are
    combined into one settlement. Existing rows are returned untouched.
    """
    created = []
    for product_id, entry in _group_consignment_lines(lines).items():
        existing = (
            db.session.query(ConsignmentSettlement)
            .filter_by(product_id=product_id, sale_id=sale.id)
            .first()
        )
        if existing is not None:
            created.append(existing)
            continue
        settlement = ConsignmentSettlement(
            product_id=product_id,
            sale_id=sale.id,
            supplier_id=entry["supplier_id"],
            sale_price=quantize_money(entry["sale_price"]),
            payout_amount=quantize_money(entry["payout"]),
        )
        db.session.add(settlement)
        created.append(settlement)
    db.session.flush()
    return created


def refresh_sale_prices(sale: Sale) -> list[ConsignmentSettlement]:
    """After an edit: unpaid settlements take the new line revenue and line cost."""
    grouped = _group_consignment_lines(sale.lines)
    updated = []
    for settlement in sale.settlements:
        if settlement.is_paid or settlement.product_id not in grouped:
            continue
        new_price = quantize_money(grouped[settlement.product_id]["sale_price"])
        new_payout = quantize_money(grouped[settlement.product_id]["payout"])
        if (new_price, new_payout) != (settlement.sale_price, settlement.payout_amount):
            settlement.sale_price = new_price
            settlement.payout_amount = new_payout
            updated.append(settlement)
    return updated


def get_settlement(settlement_id: int, *, lock: bool = False) -> ConsignmentSettlement:
    q = db.session.query(ConsignmentSettlement).filter_by(id=settlement_id)
    if lock:
        q = lock_for_update(q)
    settlement = q.first()
    if settlement is None:
        raise NotFoundError(f"Settlement {settlement_id} not found", details={"settlement_id": settlement_id})
    return settlement


def record_payout(settlement_id: int, *, actor, method: str | None = None, reference: str | None = None) -> ConsignmentSettlement:
    """Mark a settlement paid. A settlement can only be paid once."""
    permission_service.require_permission(actor, "RECORD_PAYOUT", resource=f"settlement:{settlement_id}")

    errors = FieldErrors()
    method = clean_text(method, "method", errors, max_length=32)
    reference = clean_text(reference, "reference", errors, max_length=128)
    errors.raise_if_any()

    def _op():
        settlement = get_settlement(settlement_id, lock=True)
        if settlement.is_paid:
            raise SaleStateError(
                f"Settlement {settlement_id} was already paid",
                details={"settlement_id": settlement_id, "paid_at": settlement.to_dict()["paid_at"]},
            )
        if settlement.sale.is_voided:
            raise SaleStateError(
                f"Sale {settlement.sale_id} was voided; nothing is owed for settlement {settlement_id}",
                details={"settlement_id": settlement_id, "sale_id": settlement.sale_id},
            )
        settlement.paid_at = utcnow()
        settlement.paid_by = actor.id
        settlement.payout_method = method
        settlement.payout_reference = reference
        append_sale_event(
            sale_id=settlement.sale_id,
            event_type="settlement.paid",
            actor_staff_id=actor.id,
            payload={
                "settlement_id": settlement.id,
                "supplier_id": settlement.supplier_id,
                "payout_amount": str(settlement.payout_amount),
                "method": method,
            },
        )
        return settlement

    return run_in_transaction(_op)


def _owed_query():
    return (
        db.session.query(ConsignmentSettlement)
        .join(Sale, Sale.id == ConsignmentSettlement.sale_id)
        .filter(ConsignmentSettlement.paid_at.is_(None), Sale.is_voided.is_(False))
    )


def list_unsettled(supplier_id: int | None = None) -> list[ConsignmentSettlement]:
    q = _owed_query()
    if supplier_id is not None:
        q = q.filter(ConsignmentSettlement.supplier_id == supplier_id)
    return q.order_by(ConsignmentSettlement.created_at.asc(), ConsignmentSettlement.id.asc()).all()


def list_for_sale(sale_id: int) -> list[ConsignmentSettlement]:
    return (
        db.session.query(ConsignmentSettlement)
        .filter_by(sale_id=sale_id)
        .order_by(ConsignmentSettlement.id.asc())
        .all()
    )


def supplier_balance(supplier_id: int) -> dict:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})

    owed = (
        _owed_query()
        .with_entities(func.count(ConsignmentSettlement.id), func.coalesce(func.sum(ConsignmentSettlement.payout_amount), 0))
        .filter(ConsignmentSettlement.supplier_id == supplier_id)
        .one()
    )
    paid = (
        db.session.query(func.count(ConsignmentSettlement.id), func.coalesce(func.sum(ConsignmentSettlement.payout_amount), 0))
        .filter(ConsignmentSettlement.supplier_id == supplier_id, ConsignmentSettlement.paid_at.isnot(None))
        .one()
    )
    return {
        "supplier_id": supplier_id,
        "supplier_name": supplier.name,
        "unsettled_count": int(owed[0] or 0),
        "owed": str(quantize_money(to_decimal(owed[1]))),
        "paid_count": int(paid[0] or 0),
        "paid": str(quantize_money(to_decimal(paid[1]))),
    }
