# Overview: Flask API routes for consignment settlements and payouts.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import consignment_service
from ..services.errors import PermissionDeniedError, SaleError
from ..decorators import require_auth, require_permission, error_response
from ..validation import FieldErrors, ValidationError, coerce_int


consignments_bp = Blueprint("consignments", __name__, url_prefix="/api/consignments")

SERVICE_ERRORS = (SaleError, ValidationError, PermissionDeniedError)


@consignments_bp.get("/unsettled")
@require_auth
@require_permission("VIEW_CONSIGNMENTS")
def list_unsettled_route():
    """Settlements still owed to consignors. Query: supplier_id (optional)."""
    try:
        supplier_id = request.args.get("supplier_id")
        if supplier_id is not None:
            errors = FieldErrors()
            supplier_id = coerce_int(supplier_id, "supplier_id", errors, minimum=1)
            errors.raise_if_any()
        settlements = consignment_service.list_unsettled(supplier_id)
        return jsonify({"settlements": [s.to_dict() for s in settlements]}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)


@consignments_bp.get("/suppliers/<int:supplier_id>/balance")
@require_auth
@require_permission("VIEW_CONSIGNMENTS")
def supplier_balance_route(supplier_id: int):
    try:
        return jsonify({"balance": consignment_service.supplier_balance(supplier_id)}), 200
    except SERVICE_ERRORS as e:
        return error_response(e)


@consignments_bp.post("/<int:settlement_id>/payout")
@require_auth
@require_permission("RECORD_PAYOUT")
def record_payout_route(settlement_id: int):
    """
    Record the payout of one settlement. Body: {"method": str?, "reference": str?}

    Requires: RECORD_PAYOUT
    """
    try:
        data = request.get_json(silent=True) or {}
        settlement = consignment_service.record_payout(
            settlement_id,
            actor=g.current_staff,
            method=data.get("method"),
            reference=data.get("reference"),
        )
        current_app.logger.info("Settlement %s paid by staff %s", settlement_id, g.current_staff.id)
        return jsonify({"settlement": settlement.to_dict()}), 200

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payout")
        return jsonify({"error": "Internal server error"}), 500
