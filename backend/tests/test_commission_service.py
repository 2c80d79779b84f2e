"""
Commission calculator tests.

Verifies:
- Rate and basis resolution: staff override, then store settings, then config
- Per-sale overrides replace the reported value but keep the calculation
- Voided sales and disabled commission report zero
- Commission payments record period figures and never exceed what is owed
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from lustre.models import CommissionOverride, CommissionPayment
from lustre.extensions import db
from lustre.services import audit_service, commission_service, settings_service
from lustre.services.errors import PermissionDeniedError, SaleStateError
from lustre.services.settings_service import CommissionSettings
from lustre.services.void_service import void_sale
from lustre.time_utils import utcnow
from lustre.validation import ValidationError


def _line(revenue, cost):
    return SimpleNamespace(line_revenue=Decimal(revenue), line_cost=Decimal(cost))


# =============================================================================
# PURE CALCULATION
# =============================================================================


class TestCalculateCommission:

    config = CommissionSettings(enabled=True, default_rate=Decimal("5"), basis="revenue")

    def test_revenue_basis(self):
        b = commission_service.calculate_commission([_line("200", "80"), _line("100", "30")], self.config)
        assert b.revenue == Decimal("300")
        assert b.profit == Decimal("190")
        assert b.calculated == Decimal("15")
        assert b.current == Decimal("15")
        assert not b.has_override

    def test_profit_basis(self):
        config = CommissionSettings(enabled=True, default_rate=Decimal("10"), basis="profit")
        b = commission_service.calculate_commission([_line("200", "80")], config)
        assert b.calculated == Decimal("12")

    def test_staff_override_fields_fall_back_independently(self):
        override = CommissionOverride(staff_id=1, commission_rate=None, commission_basis="profit")
        b = commission_service.calculate_commission([_line("200", "80")], self.config, override)
        assert b.rate == Decimal("5")
        assert b.basis == "profit"
        assert b.calculated == Decimal("6")

    def test_sale_override_wins_but_calculation_kept(self):
        b = commission_service.calculate_commission(
            [_line("200", "80")], self.config, None, Decimal("25"), override_reason="Big client",
        )
        assert b.calculated == Decimal("10")
        assert b.current == Decimal("25")
        assert b.has_override
        assert b.to_dict()["override_reason"] == "Big client"

    def test_disabled_reports_zero(self):
        config = CommissionSettings(enabled=False, default_rate=Decimal("5"), basis="revenue")
        b = commission_service.calculate_commission([_line("200", "80")], config, None, Decimal("25"))
        assert b.calculated == Decimal("0")
        assert b.current == Decimal("0")
        assert b.enabled is False

    def test_voided_reports_zero(self):
        b = commission_service.calculate_commission([_line("200", "80")], self.config, is_voided=True)
        assert b.current == Decimal("0")


# =============================================================================
# PERSISTED SALES
# =============================================================================


class TestSaleCommission:

    @pytest.fixture
    def sale(self, cashier, make_product, sell):
        ring = make_product(price="100.00", cost="40.00", tax_rate="20")
        return sell(cashier, (ring, 2))

    def test_config_defaults(self, sale):
        b = commission_service.get_sale_commission(sale.id)
        assert b.rate == Decimal("5")
        assert b.basis == "revenue"
        assert b.current == Decimal("10")

    def test_store_setting_overrides_config(self, sale):
        settings_service.set_setting("commission.basis", "profit")
        settings_service.set_setting("commission.default_rate", 10)

        b = commission_service.get_sale_commission(sale.id)
        assert b.calculated == Decimal("12")

    def test_disabled_by_setting(self, sale):
        settings_service.set_setting("commission.enabled", False)
        assert commission_service.get_sale_commission(sale.id).current == Decimal("0")

    def test_staff_override(self, sale, owner, cashier):
        commission_service.set_staff_override(cashier.id, actor=owner, rate="7.5")
        assert commission_service.get_sale_commission(sale.id).current == Decimal("15")

        assert commission_service.set_staff_override(cashier.id, actor=owner) is None
        assert db.session.query(CommissionOverride).count() == 0

    def test_staff_override_needs_manage_settings(self, sale, manager, cashier):
        with pytest.raises(PermissionDeniedError):
            commission_service.set_staff_override(cashier.id, actor=manager, rate="50")

    def test_staff_override_validates_basis(self, owner, cashier):
        with pytest.raises(ValidationError) as exc:
            commission_service.set_staff_override(cashier.id, actor=owner, basis="margin")
        assert "basis" in exc.value.fields

    def test_sale_override_and_clear(self, sale, manager):
        b = commission_service.set_commission_override(sale.id, "25", reason="Loyal client", actor=manager, expected_version=1)
        assert b.current == Decimal("25.00")
        assert b.calculated == Decimal("10")

        stored = commission_service.get_sale_commission(sale.id)
        assert stored.has_override
        assert stored.override_reason == "Loyal client"

        cleared = commission_service.clear_commission_override(sale.id, actor=manager)
        assert not cleared.has_override
        assert cleared.current == Decimal("10")

        events = [e.event_type for e in audit_service.list_sale_events(sale.id)]
        assert events[-2:] == ["sale.commission_overridden", "sale.commission_override_cleared"]

    def test_sale_override_needs_reason(self, sale, manager):
        with pytest.raises(ValidationError):
            commission_service.set_commission_override(sale.id, "25", reason="", actor=manager)

    def test_sale_override_rejects_negative(self, sale, manager):
        with pytest.raises(ValidationError) as exc:
            commission_service.set_commission_override(sale.id, "-1", reason="x", actor=manager)
        assert "amount" in exc.value.fields

    def test_staff_cannot_override(self, sale, cashier):
        with pytest.raises(PermissionDeniedError):
            commission_service.set_commission_override(sale.id, "25", reason="x", actor=cashier)

    def test_voided_sale(self, sale, manager):
        void_sale(sale.id, reason="Returned", actor=manager)

        assert commission_service.get_sale_commission(sale.id).current == Decimal("0")
        with pytest.raises(SaleStateError):
            commission_service.set_commission_override(sale.id, "25", reason="x", actor=manager)


class TestStaffCommissionSummary:

    def test_summary_excludes_voided_and_honours_overrides(self, cashier, manager, make_product, sell):
        ring = make_product(price="100.00", cost="40.00", tax_rate="0", quantity=10)
        sell(cashier, (ring, 1))
        second = sell(cashier, (ring, 2))
        voided = sell(cashier, (ring, 3))
        commission_service.set_commission_override(second.id, "50", reason="Promo", actor=manager)
        void_sale(voided.id, reason="Returned", actor=manager)

        summary = commission_service.staff_commission_summary(cashier.id)

        assert summary["sale_count"] == 2
        assert summary["overridden_count"] == 1
        assert summary["revenue"] == "300.00"
        assert summary["profit"] == "180.00"
        # 5% of 100 for the first sale plus the 50 override
        assert summary["commission"] == "55.00"
        assert summary["rate"] == "5"
        assert summary["basis"] == "revenue"


# =============================================================================
# COMMISSION PAYMENTS
# =============================================================================


class TestCommissionPayments:

    @pytest.fixture
    def today(self):
        return utcnow().date()

    @pytest.fixture
    def ring(self, make_product):
        return make_product(price="100.00", cost="40.00", tax_rate="0", quantity=10)

    def test_records_period_figures(self, cashier, manager, ring, sell, today):
        sell(cashier, (ring, 2))

        payment = commission_service.record_commission_payment(
            cashier.id, today, today, actor=manager, method="bank transfer", notes="Weekly run",
        )

        assert payment.commission_amount == Decimal("10.00")
        assert payment.sales_count == 1
        assert payment.revenue_total == Decimal("200.00")
        assert payment.profit_total == Decimal("120.00")
        assert payment.commission_rate == Decimal("5")
        assert payment.commission_basis == "revenue"
        assert payment.paid_by == manager.id
        assert payment.to_dict()["period_start"] == today.isoformat()

    def test_partial_then_remainder(self, cashier, manager, ring, sell, today):
        sell(cashier, (ring, 2))

        commission_service.record_commission_payment(cashier.id, today, today, actor=manager, method="cash", amount="4")
        assert commission_service.period_paid_total(cashier.id, today, today) == Decimal("4.00")

        rest = commission_service.record_commission_payment(cashier.id, today, today, actor=manager, method="cash")
        assert rest.commission_amount == Decimal("6.00")

        with pytest.raises(SaleStateError) as exc:
            commission_service.record_commission_payment(cashier.id, today, today, actor=manager, method="cash")
        assert exc.value.details["outstanding"] == "0.00"

    def test_amount_cannot_exceed_outstanding(self, cashier, manager, ring, sell, today):
        sell(cashier, (ring, 2))

        with pytest.raises(ValidationError) as exc:
            commission_service.record_commission_payment(cashier.id, today, today, actor=manager, method="cash", amount="10.01")

        assert "amount" in exc.value.fields
        assert db.session.query(CommissionPayment).count() == 0

    def test_voided_sales_owe_nothing(self, cashier, manager, ring, sell, today):
        sale = sell(cashier, (ring, 1))
        void_sale(sale.id, reason="Returned", actor=manager)

        with pytest.raises(SaleStateError):
            commission_service.record_commission_payment(cashier.id, today, today, actor=manager, method="cash")

    def test_rejects_bad_input(self, cashier, manager, today):
        with pytest.raises(ValidationError) as exc:
            commission_service.record_commission_payment(
                cashier.id, today, today - timedelta(days=1), actor=manager, method=" ", amount="0",
            )
        assert {"period_end", "method", "amount"} <= set(exc.value.fields)

    def test_staff_cannot_pay_commission(self, cashier, today):
        with pytest.raises(PermissionDeniedError):
            commission_service.record_commission_payment(cashier.id, today, today, actor=cashier, method="cash")

    def test_list_by_staff_and_overlap(self, cashier, manager, owner, ring, sell, today):
        sell(cashier, (ring, 2))
        sell(manager, (ring, 1))
        first = commission_service.record_commission_payment(cashier.id, today, today, actor=owner, method="cash", amount="3")
        second = commission_service.record_commission_payment(cashier.id, today, today, actor=owner, method="cash")
        commission_service.record_commission_payment(manager.id, today, today, actor=owner, method="cash")

        payments = commission_service.list_commission_payments(cashier.id)
        assert [p.id for p in payments] == [second.id, first.id]

        later = today + timedelta(days=7)
        assert commission_service.list_commission_payments(cashier.id, later, later) == []
        assert len(commission_service.list_commission_payments(None, today - timedelta(days=1), later)) == 3
