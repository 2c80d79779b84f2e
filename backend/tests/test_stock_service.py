"""
Stock ledger tests.

Verifies:
- quantity_on_hand always equals the sum of the product's movements
- Decrements never drive a tracked product negative
- Untracked products are never decremented or restored
"""

from decimal import Decimal

import pytest

from lustre.services import stock_service
from lustre.services.errors import InsufficientStockError, NotFoundError
from lustre.validation import ValidationError


class TestReceiveAndAdjust:

    def test_receive_updates_cost(self, make_product):
        ring = make_product(cost="40.00", quantity=2)

        movement = stock_service.receive_stock(ring.id, 3, unit_cost="42.50", note="Delivery 17")

        assert movement.movement_type == "receive"
        assert movement.quantity_delta == 3
        assert stock_service.get_product(ring.id).unit_cost == Decimal("42.50")
        assert stock_service.get_quantity_on_hand(ring.id) == 5
        assert stock_service.ledger_balance(ring.id) == 5

    @pytest.mark.parametrize("quantity", [0, -1, "two"])
    def test_receive_rejects_bad_quantity(self, make_product, quantity):
        ring = make_product()
        with pytest.raises(ValidationError) as exc:
            stock_service.receive_stock(ring.id, quantity)
        assert "quantity" in exc.value.fields

    def test_adjust_both_ways(self, make_product):
        ring = make_product(quantity=5)

        stock_service.adjust_stock(ring.id, -2, reason="Damaged clasp")
        stock_service.adjust_stock(ring.id, 1, reason="Found in safe")

        assert stock_service.get_quantity_on_hand(ring.id) == 4
        assert stock_service.ledger_balance(ring.id) == 4
        assert [m.quantity_delta for m in stock_service.list_movements(ring.id)] == [1, -2, 5]

    def test_adjust_cannot_go_negative(self, make_product):
        ring = make_product(quantity=1)
        with pytest.raises(InsufficientStockError):
            stock_service.adjust_stock(ring.id, -2, reason="Count")
        assert stock_service.get_quantity_on_hand(ring.id) == 1

    def test_adjust_validation(self, make_product):
        ring = make_product()
        with pytest.raises(ValidationError) as exc:
            stock_service.adjust_stock(ring.id, 0, reason="")
        assert set(exc.value.fields) == {"quantity_delta", "reason"}

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.receive_stock(404, 1)
        with pytest.raises(NotFoundError):
            stock_service.get_quantity_on_hand(404)


class TestSaleMovements:

    def test_decrement_guarded(self, make_product, db_session):
        ring = make_product(quantity=2)

        with pytest.raises(InsufficientStockError) as exc:
            stock_service.decrement_stock(ring.id, 3, movement_type="sale")
        db_session.rollback()

        assert exc.value.details["shortages"][0]["available"] == 2
        assert stock_service.get_quantity_on_hand(ring.id) == 2

    def test_untracked_product_is_skipped(self, make_product, db_session):
        engraving = make_product(name="Engraving", track_stock=False)

        assert stock_service.decrement_stock(engraving.id, 10, movement_type="sale") is None
        assert stock_service.restore_stock(engraving.id, 10, movement_type="sale_void") is None
        assert stock_service.ledger_balance(engraving.id) == 0

    def test_check_availability_sums_duplicates(self, make_product):
        ring = make_product(name="Ring", quantity=3)
        engraving = make_product(name="Engraving", track_stock=False)

        stock_service.check_availability([(ring.id, 2), (engraving.id, 50)])
        with pytest.raises(InsufficientStockError) as exc:
            stock_service.check_availability([(ring.id, 2), (ring.id, 2)])
        assert exc.value.details["shortages"] == [
            {"product_id": ring.id, "name": "Ring", "requested": 4, "available": 3},
        ]

    def test_low_stock(self, make_product):
        low = make_product(name="Low", quantity=1, reorder_level=2)
        make_product(name="Plenty", quantity=9, reorder_level=2)
        make_product(name="Unwatched", quantity=0)

        assert [p.id for p in stock_service.list_low_stock()] == [low.id]
