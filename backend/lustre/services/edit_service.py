# Overview: Edit Engine - change quantities, prices and discounts of a committed sale.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from ..extensions import db
from ..models import Sale, SaleLineItem, Staff
from ..models.inventory import MOVEMENT_SALE_EDIT
from ..money import quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import FieldErrors, coerce_amount, coerce_int
from . import consignment_service, permission_service, stock_service
from .audit_service import append_sale_event
from .concurrency import check_version, run_in_transaction
from .errors import ConcurrentModificationError, NotFoundError, SaleStateError
from .pricing_service import DiscountSpec, PricedLine, calculate_totals
from .sales_service import get_sale, resolve_negative_approval
"""
Edit invariants:

- Planning is pure: plan_edit compares the caller's snapshot with the
  proposed values and decides per line whether anything changed and by how
  much stock must move. No database access.
- Unchanged values are a no-op: no stock movement, no audit row, no
  version bump.
- Voided sales are rejected before any write.
- The caller's snapshot must match the persisted line, and expected_version
  (when given) the persisted sale; otherwise ConcurrentModificationError.
- stock_delta = new_quantity - old_quantity. Positive deltas decrement stock
  (and may fail with InsufficientStockError); negative deltas restore it.
"""

DEFAULT_EDIT_REASON = "Sale edited"


@dataclass(frozen=True)
class LineValues:
    line_id: int
    quantity: int
    unit_price: Decimal
    discount: Decimal


@dataclass(frozen=True)
class LinePlan:
    line_id: int
    original: LineValues
    proposed: LineValues
    has_changes: bool
    stock_delta: int

    def changes(self) -> dict:
        out = {}
        for name in ("quantity", "unit_price", "discount"):
            before = getattr(self.original, name)
            after = getattr(self.proposed, name)
            if before != after:
                out[name] = {"from": str(before), "to": str(after)}
        return out


@dataclass(frozen=True)
class EditPlan:
    lines: tuple[LinePlan, ...]

    @property
    def has_changes(self) -> bool:
        return any(p.has_changes for p in self.lines)

    @property
    def changed_lines(self) -> list[LinePlan]:
        return [p for p in self.lines if p.has_changes]


@dataclass(frozen=True)
class EditResult:
    sale: Sale
    plan: EditPlan


def _normalise(values: LineValues) -> LineValues:
    return LineValues(
        line_id=values.line_id,
        quantity=values.quantity,
        unit_price=quantize_money(values.unit_price),
        discount=quantize_money(values.discount),
    )


def plan_edit(original: Sequence[LineValues], proposed: Sequence[LineValues]) -> EditPlan:
    """
    Decide what an edit would change.

    Lines absent from proposed are left as they are. A proposal for a line
    that is not in the snapshot is a ValidationError.
    """
    errors = FieldErrors()
    by_id = {v.line_id: _normalise(v) for v in original}
    proposals = {}
    for i, p in enumerate(proposed):
        prefix = f"lines[{i}]"
        if p.line_id not in by_id:
            errors.add(f"{prefix}.id", "line is not part of this sale")
            continue
        if isinstance(p.quantity, bool) or not isinstance(p.quantity, int) or p.quantity <= 0:
            errors.add(f"{prefix}.quantity", "quantity must be a positive integer")
            continue
        price = to_decimal(p.unit_price)
        discount = to_decimal(p.discount)
        if price < 0:
            errors.add(f"{prefix}.unit_price", "unit_price must be >= 0")
        if discount < 0:
            errors.add(f"{prefix}.discount", "discount must be >= 0")
        elif discount > price * p.quantity:
            errors.add(f"{prefix}.discount", "discount cannot exceed the line amount")
        proposals[p.line_id] = _normalise(p)
    errors.raise_if_any("Invalid edit")

    plans = []
    for line_id, before in by_id.items():
        after = proposals.get(line_id, before)
        changed = (before.quantity, before.unit_price, before.discount) != (after.quantity, after.unit_price, after.discount)
        plans.append(LinePlan(
            line_id=line_id,
            original=before,
            proposed=after,
            has_changes=changed,
            stock_delta=after.quantity - before.quantity,
        ))
    return EditPlan(lines=tuple(plans))


def parse_line_values(raw_lines, field: str) -> list[LineValues]:
    """JSON list of {id, quantity, unit_price, discount} -> LineValues."""
    errors = FieldErrors()
    if not isinstance(raw_lines, list) or not raw_lines:
        errors.add(field, f"{field} must be a non-empty list")
        errors.raise_if_any("Invalid edit")
    out = []
    for i, raw in enumerate(raw_lines):
        prefix = f"{field}[{i}]"
        if not isinstance(raw, dict):
            errors.add(prefix, "must be an object")
            continue
        line_id = coerce_int(raw.get("id"), f"{prefix}.id", errors, minimum=1)
        quantity = coerce_int(raw.get("quantity"), f"{prefix}.quantity", errors, minimum=1)
        unit_price = coerce_amount(raw.get("unit_price"), f"{prefix}.unit_price", errors)
        discount = coerce_amount(raw.get("discount", "0"), f"{prefix}.discount", errors)
        out.append(LineValues(line_id, quantity, unit_price, discount))
    errors.raise_if_any("Invalid edit")
    return out


def snapshot_lines(sale: Sale) -> list[LineValues]:
    """Current persisted values of a sale's lines, as a caller would have read them."""
    return [LineValues(l.id, l.quantity, to_decimal(l.unit_price), to_decimal(l.discount)) for l in sale.lines]


def reprice_sale(sale: Sale) -> None:
    """Recompute header totals from the persisted lines and the stored cart discount."""
    result = calculate_totals(
        [
            PricedLine(
                unit_price=to_decimal(line.unit_price),
                quantity=line.quantity,
                discount=to_decimal(line.discount),
                tax_rate=to_decimal(line.tax_rate),
            )
            for line in sale.lines
        ],
        DiscountSpec(sale.discount_type, to_decimal(sale.discount_value)),
        [sale.part_exchange_total],
    ).rounded()
    sale.subtotal = result.subtotal
    sale.discount_total = result.discount_total
    sale.tax_total = result.tax_total
    sale.total = result.total


def _load_line(sale: Sale, line_id: int) -> SaleLineItem:
    line = db.session.get(SaleLineItem, line_id)
    if line is None or line.sale_id != sale.id:
        raise NotFoundError(f"Line {line_id} not found on sale {sale.id}", details={"line_id": line_id})
    return line


def edit_sale(
    sale_id: int,
    *,
    original_lines: Sequence[LineValues],
    proposed_lines: Sequence[LineValues],
    reason: str | None,
    actor: Staff,
    expected_version: int | None = None,
) -> EditResult:
    permission_service.require_permission(actor, "EDIT_SALE", resource=f"sale:{sale_id}")

    plan = plan_edit(original_lines, proposed_lines)
    reason = (reason or "").strip()[:255] or DEFAULT_EDIT_REASON

    sale = get_sale(sale_id)
    if sale.is_voided:
        raise SaleStateError(f"Sale {sale_id} is voided and cannot be edited", details={"sale_id": sale_id})
    if not plan.has_changes:
        return EditResult(sale=sale, plan=plan)

    def _op():
        locked = get_sale(sale_id, lock=True)
        if locked.is_voided:
            raise SaleStateError(f"Sale {sale_id} is voided and cannot be edited", details={"sale_id": sale_id})
        check_version(locked, expected_version)

        now = utcnow()
        for line_plan in plan.changed_lines:
            line = _load_line(locked, line_plan.line_id)
            persisted = (line.quantity, quantize_money(line.unit_price), quantize_money(line.discount))
            snapshot = (line_plan.original.quantity, line_plan.original.unit_price, line_plan.original.discount)
            if persisted != snapshot:
                raise ConcurrentModificationError(
                    f"Line {line.id} changed since it was read; reload and try again",
                    details={"line_id": line.id},
                )

            if line_plan.stock_delta > 0:
                stock_service.decrement_stock(
                    line.product_id,
                    line_plan.stock_delta,
                    movement_type=MOVEMENT_SALE_EDIT,
                    sale_id=locked.id,
                    staff_id=actor.id,
                    note=reason,
                )
            elif line_plan.stock_delta < 0:
                stock_service.restore_stock(
                    line.product_id,
                    -line_plan.stock_delta,
                    movement_type=MOVEMENT_SALE_EDIT,
                    sale_id=locked.id,
                    staff_id=actor.id,
                    note=reason,
                )

            line.quantity = line_plan.proposed.quantity
            line.unit_price = line_plan.proposed.unit_price
            line.discount = line_plan.proposed.discount

            append_sale_event(
                sale_id=locked.id,
                event_type="sale.line_edited",
                actor_staff_id=actor.id,
                note=reason,
                occurred_at=now,
                payload={
                    "line_id": line.id,
                    "product_id": line.product_id,
                    "stock_delta": line_plan.stock_delta,
                    "changes": line_plan.changes(),
                },
            )

        before_total = str(quantize_money(locked.total))
        # Header changes are flushed together below: one edit, one version bump.
        with db.session.no_autoflush:
            reprice_sale(locked)
            approved_by = resolve_negative_approval(locked.net_total, actor, None)
            if approved_by is not None:
                locked.negative_net_approved_by = approved_by
            consignment_service.refresh_sale_prices(locked)

            locked.edited_at = now
            locked.edited_by = actor.id
            locked.edit_reason = reason

        append_sale_event(
            sale_id=locked.id,
            event_type="sale.edited",
            actor_staff_id=actor.id,
            note=reason,
            occurred_at=now,
            payload={
                "changed_line_ids": [p.line_id for p in plan.changed_lines],
                "total_before": before_total,
                "total_after": str(quantize_money(locked.total)),
            },
        )
        return EditResult(sale=locked, plan=plan)

    return run_in_transaction(_op)
