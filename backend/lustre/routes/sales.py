# Overview: Flask API routes for sale commit, edit, void and read access; parses input and returns JSON responses.

# backend/lustre/routes/sales.py
"""Sales API routes with capability enforcement"""

from datetime import date

from flask import Blueprint, request, jsonify, g, current_app

from ..services import (
    audit_service,
    commission_service,
    edit_service,
    permission_service,
    sales_service,
    staff_service,
    void_service,
)
from ..services.errors import PermissionDeniedError, SaleError
from ..decorators import require_auth, require_permission, require_role, error_response
from ..time_utils import parse_iso_datetime
from ..validation import FieldErrors, ValidationError, coerce_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SERVICE_ERRORS = (SaleError, ValidationError, PermissionDeniedError)


def _expected_version(data: dict) -> int | None:
    if data.get("expected_version") is None:
        return None
    errors = FieldErrors()
    version = coerce_int(data.get("expected_version"), "expected_version", errors, minimum=1)
    errors.raise_if_any()
    return version


def _date_arg(name: str):
    raw = request.args.get(name)
    try:
        return parse_iso_datetime(raw, end_of_day=name == "end")
    except ValueError:
        raise ValidationError("Invalid query parameter", fields={name: "must be an ISO-8601 date"})


@sales_bp.post("/quote")
@require_auth
@require_permission("CREATE_SALE")
def quote_sale_route():
    """
    Price a cart without committing it.

    Requires: CREATE_SALE
    """
    try:
        data = request.get_json(silent=True) or {}
        data = dict(data, payment=data.get("payment") or "other")
        sale_request = sales_service.parse_sale_payload(data)
        totals = sales_service.quote_sale(sale_request)
        return jsonify({"totals": totals.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to quote sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def commit_sale_route():
    """
    Commit a finalized cart as a sale.

    Requires: CREATE_SALE
    Net-negative sales also need APPROVE_NEGATIVE_SALE from the caller or
    from the staff member owning "approver_token".
    """
    try:
        data = request.get_json(silent=True) or {}
        sale_request = sales_service.parse_sale_payload(data)

        approver = None
        if data.get("approver_token"):
            approver = staff_service.resolve_token(str(data["approver_token"]))
            if approver is None:
                raise ValidationError("Invalid approver", fields={"approver_token": "unknown or inactive staff token"})

        sale = sales_service.commit_sale(sale_request, actor=g.current_staff, approver=approver)
        current_app.logger.info(
            "Sale %s committed by staff %s (total=%s, net=%s)",
            sale.id, g.current_staff.id, sale.total, sale.net_total,
        )
        return jsonify({"sale": sales_service.get_sale_detail(sale.id)}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/summary")
@require_auth
@require_permission("VIEW_SALES")
def sales_summary_route():
    """Aggregates over active sales. Query: start, end (ISO-8601), staff_id."""
    try:
        staff_id = request.args.get("staff_id")
        if staff_id is not None:
            errors = FieldErrors()
            staff_id = coerce_int(staff_id, "staff_id", errors, minimum=1)
            errors.raise_if_any()
        summary = sales_service.summarize_sales(_date_arg("start"), _date_arg("end"), staff_id)
        return jsonify({"summary": summary}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to summarize sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/commission-summary")
@require_auth
@require_permission("VIEW_SALES")
def commission_summary_route():
    """Commission totals for one staff member. Query: staff_id, start, end.

    Staff may only see their own totals; managers may see anyone's.
    """
    try:
        errors = FieldErrors()
        raw_staff_id = request.args.get("staff_id")
        staff_id = g.current_staff.id if raw_staff_id is None else coerce_int(raw_staff_id, "staff_id", errors, minimum=1)
        errors.raise_if_any()
        if staff_id != g.current_staff.id:
            permission_service.require_role(g.current_staff, "manager", resource=f"{request.method} {request.path}")
        summary = commission_service.staff_commission_summary(staff_id, _date_arg("start"), _date_arg("end"))
        return jsonify({"summary": summary}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)


def _period_date(value, name: str, errors: FieldErrors):
    if value is None or not str(value).strip():
        return None
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        errors.add(name, "must be an ISO-8601 date (YYYY-MM-DD)")
        return None


@sales_bp.post("/commission-payments")
@require_auth
@require_permission("PAY_COMMISSION")
def record_commission_payment_route():
    """
    Record a commission payout for one staff member and period.

    Body: {"staff_id": int, "period_start": "YYYY-MM-DD", "period_end": "YYYY-MM-DD",
           "method": str, "amount": decimal?, "notes": str?}
    amount defaults to the commission still outstanding for the period.
    """
    try:
        data = request.get_json(silent=True) or {}
        errors = FieldErrors()
        staff_id = coerce_int(data.get("staff_id"), "staff_id", errors, minimum=1)
        period_start = _period_date(data.get("period_start"), "period_start", errors)
        period_end = _period_date(data.get("period_end"), "period_end", errors)
        errors.raise_if_any("Invalid commission payment")

        payment = commission_service.record_commission_payment(
            staff_id,
            period_start,
            period_end,
            actor=g.current_staff,
            method=data.get("method"),
            amount=data.get("amount"),
            notes=data.get("notes"),
        )
        current_app.logger.info(
            "Commission payment %s: %s paid to staff %s for %s..%s by staff %s",
            payment.id, payment.commission_amount, staff_id, period_start, period_end, g.current_staff.id,
        )
        return jsonify({"payment": payment.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record commission payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/commission-payments")
@require_auth
@require_permission("VIEW_SALES")
def list_commission_payments_route():
    """Payment history. Query: staff_id, period_start, period_end (overlap).

    Staff may only list their own payments; managers may list anyone's.
    """
    try:
        errors = FieldErrors()
        raw_staff_id = request.args.get("staff_id")
        staff_id = None if raw_staff_id is None else coerce_int(raw_staff_id, "staff_id", errors, minimum=1)
        period_start = _period_date(request.args.get("period_start"), "period_start", errors)
        period_end = _period_date(request.args.get("period_end"), "period_end", errors)
        errors.raise_if_any()
        if not permission_service.is_at_least_role(g.current_staff, "manager"):
            if staff_id is not None and staff_id != g.current_staff.id:
                permission_service.require_role(g.current_staff, "manager", resource=f"{request.method} {request.path}")
            staff_id = g.current_staff.id

        payments = commission_service.list_commission_payments(staff_id, period_start, period_end)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sales_service.get_sale_detail(sale_id)}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)


@sales_bp.get("/<int:sale_id>/events")
@require_auth
@require_permission("VIEW_SALES")
def sale_events_route(sale_id: int):
    try:
        sales_service.get_sale(sale_id)
        events = audit_service.list_sale_events(sale_id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/edit")
@require_auth
@require_permission("EDIT_SALE")
def edit_sale_route(sale_id: int):
    """
    Edit line quantities, prices or discounts.

    Body: {"original_lines": [...], "lines": [...], "reason": str,
           "expected_version": int}
    Each line is {"id", "quantity", "unit_price", "discount"}.
    """
    try:
        data = request.get_json(silent=True) or {}
        original = edit_service.parse_line_values(data.get("original_lines"), "original_lines")
        proposed = edit_service.parse_line_values(data.get("lines"), "lines")

        result = edit_service.edit_sale(
            sale_id,
            original_lines=original,
            proposed_lines=proposed,
            reason=data.get("reason"),
            actor=g.current_staff,
            expected_version=_expected_version(data),
        )
        if result.plan.has_changes:
            current_app.logger.info(
                "Sale %s edited by staff %s (%d line(s))",
                sale_id, g.current_staff.id, len(result.plan.changed_lines),
            )
        return jsonify({
            "has_changes": result.plan.has_changes,
            "lines": [
                {"id": p.line_id, "has_changes": p.has_changes, "stock_delta": p.stock_delta}
                for p in result.plan.lines
            ],
            "sale": sales_service.get_sale_detail(sale_id),
        }), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to edit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/void")
@require_auth
@require_permission("VOID_SALE")
def void_sale_route(sale_id: int):
    """
    Void a sale. Body: {"reason": str, "expected_version": int?}

    Requires: VOID_SALE
    """
    try:
        data = request.get_json(silent=True) or {}
        result = void_service.void_sale(
            sale_id,
            reason=data.get("reason"),
            actor=g.current_staff,
            expected_version=_expected_version(data),
        )
        current_app.logger.info("Sale %s voided by staff %s", sale_id, g.current_staff.id)
        if result.paid_settlements:
            current_app.logger.warning(
                "Voided sale %s had %d paid consignment settlement(s)",
                sale_id, len(result.paid_settlements),
            )
        return jsonify({
            "sale": sales_service.get_sale_detail(sale_id),
            "restored": [m.to_dict() for m in result.restored],
            "cash_refund": result.cash_refund.to_dict() if result.cash_refund is not None else None,
            "paid_settlements": [s.to_dict() for s in result.paid_settlements],
        }), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/part-exchanges")
@require_auth
@require_role("manager")
def add_part_exchange_route(sale_id: int):
    """
    Add a trade-in to a committed sale.

    Body: {"part_exchange": {...}, "reason": str, "expected_version": int?}
    Requires: manager or above
    """
    try:
        data = request.get_json(silent=True) or {}
        item = sales_service.parse_trade_in(data.get("part_exchange"))
        px = sales_service.add_part_exchange_to_sale(
            sale_id,
            item,
            reason=data.get("reason"),
            actor=g.current_staff,
            expected_version=_expected_version(data),
        )
        current_app.logger.info("Part exchange %s added to sale %s by staff %s", px.id, sale_id, g.current_staff.id)
        return jsonify({"part_exchange": px.to_dict(), "sale": sales_service.get_sale_detail(sale_id)}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add part exchange")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/commission")
@require_auth
@require_permission("VIEW_SALES")
def get_commission_route(sale_id: int):
    try:
        return jsonify({"commission": commission_service.get_sale_commission(sale_id).to_dict()}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)


@sales_bp.put("/<int:sale_id>/commission")
@require_auth
@require_permission("OVERRIDE_COMMISSION")
def set_commission_route(sale_id: int):
    """Body: {"amount": decimal, "reason": str, "expected_version": int?}"""
    try:
        data = request.get_json(silent=True) or {}
        breakdown = commission_service.set_commission_override(
            sale_id,
            data.get("amount"),
            reason=data.get("reason"),
            actor=g.current_staff,
            expected_version=_expected_version(data),
        )
        return jsonify({"commission": breakdown.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to override commission")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>/commission")
@require_auth
@require_permission("OVERRIDE_COMMISSION")
def clear_commission_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        breakdown = commission_service.clear_commission_override(
            sale_id,
            actor=g.current_staff,
            reason=data.get("reason"),
        )
        return jsonify({"commission": breakdown.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clear commission override")
        return jsonify({"error": "Internal server error"}), 500
