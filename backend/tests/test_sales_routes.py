"""
HTTP tests for the sales, consignment and cash drawer blueprints.

Verifies:
- Typed service errors map to 400/403/404/409 with a JSON body
- Commit, quote, edit, void and commission routes round-trip through the services
"""

import pytest

from lustre.services import consignment_service, stock_service
from lustre.time_utils import utcnow


@pytest.fixture
def ring(make_product):
    return make_product(price="100.00", cost="40.00", tax_rate="20", quantity=5)


def _cart(product, quantity=1, **extra):
    body = {"lines": [{"product_id": product.id, "quantity": quantity}], "payment": "card"}
    body.update(extra)
    return body


# =============================================================================
# COMMIT AND QUOTE
# =============================================================================


class TestCommitRoute:

    def test_commit_returns_sale(self, client, cashier_headers, ring):
        body = _cart(
            ring,
            2,
            discount={"type": "percentage", "value": "10"},
            part_exchanges=[{"title": "Old chain", "allowance": "50"}],
        )
        resp = client.post("/api/sales", json=body, headers=cashier_headers)

        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["total"] == "216.00"
        assert sale["net_total"] == "166.00"
        assert sale["version_id"] == 1
        assert sale["lines"][0]["quantity"] == 2
        assert sale["part_exchanges"][0]["status"] == "pending"
        assert stock_service.get_quantity_on_hand(ring.id) == 3

    def test_validation_errors_list_fields(self, client, cashier_headers):
        resp = client.post(
            "/api/sales",
            json={"lines": [{"product_id": "x", "quantity": 0}], "payment": "cheque"},
            headers=cashier_headers,
        )

        assert resp.status_code == 400
        fields = resp.get_json()["fields"]
        assert {"lines[0].product_id", "lines[0].quantity", "payment"} <= set(fields)

    def test_oversell_is_conflict(self, client, cashier_headers, ring):
        resp = client.post("/api/sales", json=_cart(ring, 6), headers=cashier_headers)

        assert resp.status_code == 409
        shortage = resp.get_json()["details"]["shortages"][0]
        assert shortage == {"product_id": ring.id, "name": ring.name, "requested": 6, "available": 5}
        assert stock_service.get_quantity_on_hand(ring.id) == 5

    def test_unknown_product_is_a_field_error(self, client, cashier_headers, db_session):
        resp = client.post("/api/sales", json={"lines": [{"product_id": 999, "quantity": 1}], "payment": "card"}, headers=cashier_headers)
        assert resp.status_code == 400
        assert "lines[0].product_id" in resp.get_json()["fields"]

    def test_negative_net_needs_approval(self, client, cashier_headers, manager_account, make_product):
        bracelet = make_product(price="10.00", tax_rate="0")
        body = _cart(bracelet, part_exchanges=[{"title": "Gold bangle", "allowance": "80"}])

        resp = client.post("/api/sales", json=body, headers=cashier_headers)
        assert resp.status_code == 403
        assert stock_service.get_quantity_on_hand(bracelet.id) == 5

        body["approver_token"] = manager_account[1]
        resp = client.post("/api/sales", json=body, headers=cashier_headers)
        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["net_total"] == "-70.00"
        assert sale["negative_net_approved_by"] == manager_account[0].id

    def test_bad_approver_token(self, client, cashier_headers, ring):
        resp = client.post("/api/sales", json=_cart(ring, approver_token="nope"), headers=cashier_headers)
        assert resp.status_code == 400
        assert "approver_token" in resp.get_json()["fields"]

    def test_quote_writes_nothing(self, client, cashier_headers, ring):
        resp = client.post("/api/sales/quote", json={"lines": [{"product_id": ring.id, "quantity": 2}]}, headers=cashier_headers)

        assert resp.status_code == 200
        assert resp.get_json()["totals"]["total"] == "240.00"
        assert stock_service.get_quantity_on_hand(ring.id) == 5


# =============================================================================
# READS
# =============================================================================


class TestReadRoutes:

    def test_get_sale_and_events(self, client, cashier, cashier_headers, ring, sell):
        sale = sell(cashier, (ring, 1))

        resp = client.get(f"/api/sales/{sale.id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["id"] == sale.id

        resp = client.get(f"/api/sales/{sale.id}/events", headers=cashier_headers)
        assert [e["event_type"] for e in resp.get_json()["events"]] == ["sale.committed"]

    def test_unknown_sale(self, client, cashier_headers):
        assert client.get("/api/sales/999", headers=cashier_headers).status_code == 404
        assert client.get("/api/sales/999/events", headers=cashier_headers).status_code == 404

    def test_summary(self, client, cashier, cashier_headers, ring, sell):
        sell(cashier, (ring, 1))
        sell(cashier, (ring, 2))

        resp = client.get(f"/api/sales/summary?staff_id={cashier.id}", headers=cashier_headers)
        summary = resp.get_json()["summary"]
        assert summary["sale_count"] == 2
        assert summary["revenue"] == "360.00"

    def test_summary_rejects_bad_date(self, client, cashier_headers, db_session):
        resp = client.get("/api/sales/summary?start=yesterday", headers=cashier_headers)
        assert resp.status_code == 400
        assert "start" in resp.get_json()["fields"]


# =============================================================================
# EDIT, VOID, PART EXCHANGE, COMMISSION
# =============================================================================


class TestChangeRoutes:

    @pytest.fixture
    def sale(self, cashier, ring, sell):
        return sell(cashier, (ring, 2))

    def _line(self, sale, **changes):
        line = sale.lines[0]
        data = {"id": line.id, "quantity": line.quantity, "unit_price": str(line.unit_price), "discount": str(line.discount)}
        data.update(changes)
        return data

    def test_edit(self, client, manager_headers, sale, ring):
        body = {
            "original_lines": [self._line(sale)],
            "lines": [self._line(sale, quantity=3)],
            "reason": "Added one",
            "expected_version": 1,
        }
        resp = client.post(f"/api/sales/{sale.id}/edit", json=body, headers=manager_headers)

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["has_changes"] is True
        assert data["lines"][0]["stock_delta"] == 1
        assert data["sale"]["version_id"] == 2
        assert stock_service.get_quantity_on_hand(ring.id) == 2

    def test_edit_with_stale_version_conflicts(self, client, manager_headers, sale):
        body = {"original_lines": [self._line(sale)], "lines": [self._line(sale, quantity=1)], "expected_version": 5}
        resp = client.post(f"/api/sales/{sale.id}/edit", json=body, headers=manager_headers)
        assert resp.status_code == 409

    def test_void_then_void_again(self, client, manager_headers, sale, ring):
        resp = client.post(f"/api/sales/{sale.id}/void", json={"reason": "Returned"}, headers=manager_headers)

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["sale"]["is_voided"] is True
        assert data["restored"][0]["quantity_delta"] == 2
        assert data["cash_refund"] is None
        assert stock_service.get_quantity_on_hand(ring.id) == 5

        resp = client.post(f"/api/sales/{sale.id}/void", json={"reason": "Again"}, headers=manager_headers)
        assert resp.status_code == 409

    def test_void_requires_reason(self, client, manager_headers, sale):
        resp = client.post(f"/api/sales/{sale.id}/void", json={}, headers=manager_headers)
        assert resp.status_code == 400
        assert "reason" in resp.get_json()["fields"]

    def test_late_part_exchange(self, client, manager_headers, sale):
        body = {"part_exchange": {"title": "Silver locket", "allowance": "30"}, "reason": "Forgot at till"}
        resp = client.post(f"/api/sales/{sale.id}/part-exchanges", json=body, headers=manager_headers)

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["part_exchange"]["title"] == "Silver locket"
        assert data["sale"]["net_total"] == "210.00"

    def test_commission_override(self, client, cashier_headers, manager_headers, sale):
        resp = client.get(f"/api/sales/{sale.id}/commission", headers=cashier_headers)
        assert resp.get_json()["commission"]["current"] == "10.00"

        resp = client.put(
            f"/api/sales/{sale.id}/commission",
            json={"amount": "30", "reason": "Closed the deal"},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["commission"]["current"] == "30.00"

        resp = client.delete(f"/api/sales/{sale.id}/commission", headers=manager_headers)
        assert resp.get_json()["commission"]["has_override"] is False


# =============================================================================
# CONSIGNMENTS AND CASH DRAWER
# =============================================================================


class TestConsignmentRoutes:

    def test_unsettled_balance_and_payout(self, client, cashier, cashier_headers, manager_headers, supplier, make_product, sell):
        brooch = make_product(name="Brooch", price="100.00", cost="60.00", tax_rate="0", supplier=supplier)
        sale = sell(cashier, (brooch, 1))
        settlement = consignment_service.list_for_sale(sale.id)[0]

        resp = client.get(f"/api/consignments/unsettled?supplier_id={supplier.id}", headers=cashier_headers)
        assert [s["id"] for s in resp.get_json()["settlements"]] == [settlement.id]

        resp = client.post(f"/api/consignments/{settlement.id}/payout", json={"method": "bank transfer"}, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["settlement"]["payout_method"] == "bank transfer"

        resp = client.post(f"/api/consignments/{settlement.id}/payout", json={}, headers=manager_headers)
        assert resp.status_code == 409

        resp = client.get(f"/api/consignments/suppliers/{supplier.id}/balance", headers=cashier_headers)
        assert resp.get_json()["balance"]["paid"] == "60.00"

    def test_unknown_supplier_balance(self, client, cashier_headers):
        resp = client.get("/api/consignments/suppliers/999/balance", headers=cashier_headers)
        assert resp.status_code == 404


class TestCashDrawerRoutes:

    def test_movement_and_balance(self, client, cashier, manager_headers, cashier_headers, location, make_product, sell):
        resp = client.post(
            f"/api/cash-drawer/{location.id}/movements",
            json={"movement_type": "float_set", "amount": "100"},
            headers=manager_headers,
        )
        assert resp.status_code == 201

        sell(cashier, (make_product(price="25.00", tax_rate="0"), 1), payment="cash", location_id=location.id)

        resp = client.get(f"/api/cash-drawer/{location.id}", headers=cashier_headers)
        data = resp.get_json()
        assert data["balance"] == "125.00"
        assert [m["movement_type"] for m in data["movements"]] == ["sale_cash_in", "float_set"]

    def test_invalid_movement(self, client, manager_headers, location):
        resp = client.post(
            f"/api/cash-drawer/{location.id}/movements",
            json={"movement_type": "withdrawal", "amount": "10"},
            headers=manager_headers,
        )
        assert resp.status_code == 400
        assert "notes" in resp.get_json()["fields"]

    def test_unknown_location(self, client, cashier_headers):
        assert client.get("/api/cash-drawer/999", headers=cashier_headers).status_code == 404


class TestCommissionSummaryRoute:

    def test_own_summary(self, client, cashier, cashier_headers, ring, sell):
        sell(cashier, (ring, 2))

        resp = client.get("/api/sales/commission-summary", headers=cashier_headers)
        summary = resp.get_json()["summary"]
        assert summary["staff_id"] == cashier.id
        assert summary["commission"] == "10.00"

    def test_other_staff_needs_manager(self, client, cashier_headers, manager, manager_headers, cashier):
        resp = client.get(f"/api/sales/commission-summary?staff_id={manager.id}", headers=cashier_headers)
        assert resp.status_code == 403

        resp = client.get(f"/api/sales/commission-summary?staff_id={cashier.id}", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["summary"]["sale_count"] == 0

    def test_unknown_staff(self, client, manager_headers):
        resp = client.get("/api/sales/commission-summary?staff_id=999", headers=manager_headers)
        assert resp.status_code == 404


class TestCommissionPaymentRoutes:

    def test_record_and_list(self, client, cashier, cashier_headers, manager_headers, ring, sell):
        sell(cashier, (ring, 2))
        today = utcnow().date().isoformat()

        resp = client.post(
            "/api/sales/commission-payments",
            json={"staff_id": cashier.id, "period_start": today, "period_end": today, "method": "cash"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        payment = resp.get_json()["payment"]
        assert payment["commission_amount"] == "10.00"
        assert payment["revenue_total"] == "200.00"

        resp = client.post(
            "/api/sales/commission-payments",
            json={"staff_id": cashier.id, "period_start": today, "period_end": today, "method": "cash"},
            headers=manager_headers,
        )
        assert resp.status_code == 409

        resp = client.get("/api/sales/commission-payments", headers=cashier_headers)
        assert [p["id"] for p in resp.get_json()["payments"]] == [payment["id"]]

    def test_bad_dates(self, client, cashier, manager_headers):
        resp = client.post(
            "/api/sales/commission-payments",
            json={"staff_id": cashier.id, "period_start": "last week", "period_end": "2026-10-19", "method": "cash"},
            headers=manager_headers,
        )
        assert resp.status_code == 400
        assert "period_start" in resp.get_json()["fields"]

    def test_staff_cannot_list_others(self, client, cashier_headers, manager):
        resp = client.get(f"/api/sales/commission-payments?staff_id={manager.id}", headers=cashier_headers)
        assert resp.status_code == 403
