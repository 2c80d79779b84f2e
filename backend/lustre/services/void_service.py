# Overview: Void Engine - one-way Active -> Voided transition for committed sales.

"""
Void semantics:

- Active -> Voided is one-way; voiding twice is a SaleStateError.
- The sale and its lines stay on record; aggregates skip voided sales.
- Stock: each product gets back exactly the net quantity this sale still
  holds (commit decrement adjusted by every edit), so stock returns to its
  pre-sale level whatever edits happened in between.
- Cash: a cash sale hands its net cash-in back as a sale_void_refund.
- Pending trade-ins become 'discarded'. Consignment settlements are kept;
  already-paid ones are reported so the payout can be recovered by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models import CashDrawerMovement, ConsignmentSettlement, Sale, Staff, StockMovement
from ..models.inventory import MOVEMENT_SALE_VOID
from ..models.sales import PX_DISCARDED, PX_PENDING
from ..money import quantize_money
from ..time_utils import utcnow
from ..validation import require_reason
from . import cash_drawer_service, permission_service, stock_service
from .audit_service import append_sale_event
from .concurrency import check_version, run_in_transaction
from .errors import SaleStateError
from .sales_service import get_sale


@dataclass
class VoidResult:
    sale: Sale
    restored: list[StockMovement] = field(default_factory=list)
    paid_settlements: list[ConsignmentSettlement] = field(default_factory=list)
    cash_refund: CashDrawerMovement | None = None


def void_sale(sale_id: int, *, reason: str, actor: Staff, expected_version: int | None = None) -> VoidResult:
    permission_service.require_permission(actor, "VOID_SALE", resource=f"sale:{sale_id}")
    reason = require_reason(reason)

    def _op():
        sale = get_sale(sale_id, lock=True)
        if sale.is_voided:
            raise SaleStateError(f"Sale {sale_id} is already voided", details={"sale_id": sale_id})
        check_version(sale, expected_version)

        now = utcnow()
        result = VoidResult(sale=sale)

        for product_id in sorted({line.product_id for line in sale.lines}):
            held = stock_service.net_sale_quantity(sale.id, product_id)
            if held <= 0:
                continue
            movement = stock_service.restore_stock(
                product_id,
                held,
                movement_type=MOVEMENT_SALE_VOID,
                sale_id=sale.id,
                staff_id=actor.id,
                note=f"Void sale #{sale.id}: {reason}",
            )
            if movement is not None:
                result.restored.append(movement)

        result.cash_refund = cash_drawer_service.record_void_refund(sale_id=sale.id, staff_id=actor.id)

        discarded = []
        for px in sale.part_exchanges:
            if px.status == PX_PENDING:
                px.status = PX_DISCARDED
                discarded.append(px.id)

        result.paid_settlements = [s for s in sale.settlements if s.is_paid]

        sale.is_voided = True
        sale.void_reason = reason
        sale.voided_at = now
        sale.voided_by = actor.id

        append_sale_event(
            sale_id=sale.id,
            event_type="sale.voided",
            actor_staff_id=actor.id,
            note=reason,
            occurred_at=now,
            payload={
                "total": str(quantize_money(sale.total)),
                "restored": {str(m.product_id): m.quantity_delta for m in result.restored},
                "cash_refund": str(-result.cash_refund.amount) if result.cash_refund is not None else None,
                "discarded_part_exchange_ids": discarded,
                "paid_settlement_ids": [s.id for s in result.paid_settlements],
            },
        )
        return result

    return run_in_transaction(_op)
