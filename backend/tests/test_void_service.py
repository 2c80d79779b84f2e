"""
Void engine tests.

Verifies:
- Voiding restores stock to its pre-sale level, even after edits
- Voided sales stay queryable but leave revenue aggregates
- Double void is rejected
- Cash sales hand their cash back; pending trade-ins are discarded
- Paid consignment settlements are reported for manual recovery
"""

from decimal import Decimal

import pytest

from lustre.extensions import db
from lustre.models import StockMovement
from lustre.services import (
    audit_service,
    cash_drawer_service,
    consignment_service,
    sales_service,
    stock_service,
)
from lustre.services.edit_service import LineValues, edit_sale, snapshot_lines
from lustre.services.errors import ConcurrentModificationError, PermissionDeniedError, SaleStateError
from lustre.services.pricing_service import DISCOUNT_PERCENTAGE, DiscountSpec, TradeIn
from lustre.services.void_service import void_sale
from lustre.validation import ValidationError


def _edit_quantity(sale, quantity, actor):
    original = snapshot_lines(sale)
    first = original[0]
    proposed = [LineValues(first.line_id, quantity, first.unit_price, first.discount)]
    return edit_sale(sale.id, original_lines=original, proposed_lines=proposed, reason="Edit", actor=actor)


class TestVoidSale:

    def test_receipt_example_void(self, cashier, manager, make_product, sell):
        ring = make_product(price="100.00", tax_rate="20", quantity=5)
        sale = sell(
            cashier,
            (ring, 2),
            discount=DiscountSpec(DISCOUNT_PERCENTAGE, Decimal("10")),
            trade_ins=(TradeIn("Old chain", Decimal("50")),),
        )
        assert sales_service.summarize_sales()["revenue"] == "216.00"

        result = void_sale(sale.id, reason="Customer changed mind", actor=manager)

        assert [m.quantity_delta for m in result.restored] == [2]
        assert stock_service.get_quantity_on_hand(ring.id) == 5
        assert stock_service.ledger_balance(ring.id) == 5

        voided = sales_service.get_sale(sale.id)
        assert voided.is_voided is True
        assert voided.void_reason == "Customer changed mind"
        assert voided.voided_by == manager.id
        assert voided.voided_at is not None
        assert voided.total == Decimal("216.00")
        assert len(voided.lines) == 1

        summary = sales_service.summarize_sales()
        assert summary["sale_count"] == 0
        assert summary["voided_count"] == 1
        assert summary["revenue"] == "0.00"

    def test_void_after_increase_edit_restores_everything(self, cashier, manager, make_product, sell):
        ring = make_product(quantity=5)
        sale = sell(cashier, (ring, 2))
        _edit_quantity(sale, 4, manager)
        assert stock_service.get_quantity_on_hand(ring.id) == 1

        void_sale(sale.id, reason="Returned", actor=manager)

        assert stock_service.get_quantity_on_hand(ring.id) == 5
        assert stock_service.net_sale_quantity(sale.id, ring.id) == 0

    def test_void_after_decrease_edit_does_not_over_restore(self, cashier, manager, make_product, sell):
        ring = make_product(quantity=5)
        sale = sell(cashier, (ring, 3))
        _edit_quantity(sale, 1, manager)

        void_sale(sale.id, reason="Returned", actor=manager)

        assert stock_service.get_quantity_on_hand(ring.id) == 5
        assert stock_service.ledger_balance(ring.id) == 5

    def test_duplicate_product_lines_restored_once(self, cashier, manager, make_product, sell):
        ring = make_product(quantity=5)
        sale = sell(cashier, (ring, 1), (ring, 2))

        result = void_sale(sale.id, reason="Returned", actor=manager)

        assert [m.quantity_delta for m in result.restored] == [3]
        assert stock_service.get_quantity_on_hand(ring.id) == 5

    def test_untracked_product_not_restored(self, cashier, manager, make_product, sell):
        engraving = make_product(name="Engraving", track_stock=False)
        sale = sell(cashier, (engraving, 1))

        result = void_sale(sale.id, reason="Not done", actor=manager)

        assert result.restored == []
        assert db.session.query(StockMovement).filter_by(product_id=engraving.id).count() == 0

    def test_double_void_rejected(self, cashier, manager, make_product, sell):
        ring = make_product(quantity=5)
        sale = sell(cashier, (ring, 1))
        void_sale(sale.id, reason="Mistake", actor=manager)

        with pytest.raises(SaleStateError):
            void_sale(sale.id, reason="Again", actor=manager)
        assert stock_service.get_quantity_on_hand(ring.id) == 5

    def test_reason_required(self, cashier, manager, make_product, sell):
        sale = sell(cashier, (make_product(), 1))
        with pytest.raises(ValidationError):
            void_sale(sale.id, reason="   ", actor=manager)
        assert sales_service.get_sale(sale.id).is_voided is False

    def test_staff_cannot_void(self, cashier, make_product, sell):
        sale = sell(cashier, (make_product(), 1))
        with pytest.raises(PermissionDeniedError):
            void_sale(sale.id, reason="Mistake", actor=cashier)

    def test_stale_version_rejected(self, cashier, manager, make_product, sell):
        sale = sell(cashier, (make_product(), 1))
        _edit_quantity(sale, 2, manager)

        with pytest.raises(ConcurrentModificationError):
            void_sale(sale.id, reason="Mistake", actor=manager, expected_version=1)

    def test_audit_event_written(self, cashier, manager, make_product, sell):
        sale = sell(cashier, (make_product(), 1))
        void_sale(sale.id, reason="Mistake", actor=manager)

        event = audit_service.list_sale_events(sale.id)[-1]
        assert event.event_type == "sale.voided"
        assert event.note == "Mistake"
        assert event.actor_staff_id == manager.id


class TestVoidSideEffects:

    def test_cash_sale_refunded(self, cashier, manager, location, make_product, sell):
        ring = make_product(price="100.00", tax_rate="20")
        sale = sell(
            cashier,
            (ring, 1),
            payment="cash",
            location_id=location.id,
            trade_ins=(TradeIn("Old chain", Decimal("20")),),
        )
        assert cash_drawer_service.get_balance(location.id) == Decimal("100.00")

        result = void_sale(sale.id, reason="Returned", actor=manager)

        assert result.cash_refund.amount == Decimal("-100.00")
        assert result.cash_refund.movement_type == "sale_void_refund"
        assert cash_drawer_service.get_balance(location.id) == Decimal("0.00")

    def test_card_sale_has_no_refund(self, cashier, manager, make_product, sell):
        sale = sell(cashier, (make_product(), 1))
        assert void_sale(sale.id, reason="Returned", actor=manager).cash_refund is None

    def test_pending_part_exchanges_discarded(self, cashier, manager, make_product, sell):
        sale = sell(cashier, (make_product(), 1), trade_ins=(TradeIn("Old chain", Decimal("20")),))

        void_sale(sale.id, reason="Returned", actor=manager)

        sale = sales_service.get_sale(sale.id)
        assert [px.status for px in sale.part_exchanges] == ["discarded"]

    def test_unpaid_settlement_no_longer_owed(self, cashier, manager, supplier, make_product, sell):
        brooch = make_product(name="Brooch", supplier=supplier)
        sale = sell(cashier, (brooch, 1))
        assert len(consignment_service.list_unsettled()) == 1

        result = void_sale(sale.id, reason="Returned", actor=manager)

        assert result.paid_settlements == []
        assert consignment_service.list_unsettled() == []
        assert len(consignment_service.list_for_sale(sale.id)) == 1

    def test_paid_settlement_reported(self, cashier, manager, supplier, make_product, sell):
        brooch = make_product(name="Brooch", supplier=supplier)
        sale = sell(cashier, (brooch, 1))
        settlement = consignment_service.list_for_sale(sale.id)[0]
        consignment_service.record_payout(settlement.id, actor=manager, method="bank transfer")

        result = void_sale(sale.id, reason="Returned", actor=manager)

        assert [s.id for s in result.paid_settlements] == [settlement.id]
        assert audit_service.list_sale_events(sale.id)[-1].payload["paid_settlement_ids"] == [settlement.id]
