"""
Cash drawer ledger tests: signed movements, balance as their sum.
"""

from decimal import Decimal

import pytest

from lustre.services import cash_drawer_service
from lustre.services.errors import NotFoundError
from lustre.validation import ValidationError


class TestManualMovements:

    def test_deposit_and_withdrawal(self, manager, location):
        cash_drawer_service.record_movement(location_id=location.id, movement_type="deposit", amount="200", staff_id=manager.id)
        withdrawal = cash_drawer_service.record_movement(
            location_id=location.id, movement_type="withdrawal", amount="50.25", staff_id=manager.id, notes="Bank run",
        )

        assert withdrawal.amount == Decimal("-50.25")
        assert cash_drawer_service.get_balance(location.id) == Decimal("149.75")

    def test_withdrawal_needs_notes(self, location):
        with pytest.raises(ValidationError) as exc:
            cash_drawer_service.record_movement(location_id=location.id, movement_type="withdrawal", amount="10")
        assert "notes" in exc.value.fields

    def test_float_set_records_difference(self, location):
        cash_drawer_service.record_movement(location_id=location.id, movement_type="deposit", amount="30")
        movement = cash_drawer_service.record_movement(location_id=location.id, movement_type="float_set", amount="100")

        assert movement.amount == Decimal("70.00")
        assert cash_drawer_service.get_balance(location.id) == Decimal("100.00")

    def test_adjustment_is_signed(self, location):
        cash_drawer_service.record_movement(location_id=location.id, movement_type="deposit", amount="10")
        cash_drawer_service.record_movement(location_id=location.id, movement_type="adjustment", amount="-2.50", notes="Count short")
        assert cash_drawer_service.get_balance(location.id) == Decimal("7.50")

    @pytest.mark.parametrize("amount", ["0", "abc", None])
    def test_adjustment_rejects_zero_or_garbage(self, location, amount):
        with pytest.raises(ValidationError) as exc:
            cash_drawer_service.record_movement(location_id=location.id, movement_type="adjustment", amount=amount, notes="x")
        assert "amount" in exc.value.fields

    def test_sale_movement_types_not_manual(self, location):
        with pytest.raises(ValidationError) as exc:
            cash_drawer_service.record_movement(location_id=location.id, movement_type="sale_cash_in", amount="10")
        assert "movement_type" in exc.value.fields

    def test_negative_deposit_rejected(self, location):
        with pytest.raises(ValidationError):
            cash_drawer_service.record_movement(location_id=location.id, movement_type="deposit", amount="-5")


class TestDrawerReads:

    def test_unknown_location(self, db_session):
        with pytest.raises(NotFoundError):
            cash_drawer_service.get_balance(999)
        with pytest.raises(NotFoundError):
            cash_drawer_service.record_movement(location_id=999, movement_type="deposit", amount="5")

    def test_history_newest_first(self, cashier, location, make_product, sell):
        cash_drawer_service.record_movement(location_id=location.id, movement_type="float_set", amount="50")
        sale = sell(cashier, (make_product(price="10.00", tax_rate="0"), 1), payment="cash", location_id=location.id)

        history = cash_drawer_service.history(location.id)

        assert [m.movement_type for m in history] == ["sale_cash_in", "float_set"]
        assert history[0].reference_sale_id == sale.id
        assert cash_drawer_service.get_balance(location.id) == Decimal("60.00")

    def test_locations_are_separate(self, location):
        back_office = cash_drawer_service.create_location("Back office")
        cash_drawer_service.record_movement(location_id=back_office.id, movement_type="deposit", amount="40")

        assert cash_drawer_service.get_balance(location.id) == Decimal("0.00")
        assert cash_drawer_service.get_balance(back_office.id) == Decimal("40.00")

    def test_location_name_required(self, db_session):
        with pytest.raises(ValidationError):
            cash_drawer_service.create_location("  ")
