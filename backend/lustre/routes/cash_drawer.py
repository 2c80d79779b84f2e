# Overview: Flask API routes for the cash drawer ledger.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cash_drawer_service
from ..services.errors import PermissionDeniedError, SaleError
from ..decorators import require_auth, require_permission, require_role, error_response
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError


cash_drawer_bp = Blueprint("cash_drawer", __name__, url_prefix="/api/cash-drawer")

SERVICE_ERRORS = (SaleError, ValidationError, PermissionDeniedError)


@cash_drawer_bp.get("/<int:location_id>")
@require_auth
@require_permission("VIEW_SALES")
def drawer_route(location_id: int):
    """Balance plus recent movements. Query: start, end (ISO-8601)."""
    try:
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end = parse_iso_datetime(request.args.get("end"), end_of_day=True)
        except ValueError:
            raise ValidationError("Invalid query parameter", fields={"start/end": "must be ISO-8601 dates"})

        balance = cash_drawer_service.get_balance(location_id)
        movements = cash_drawer_service.history(location_id, start=start, end=end)
        return jsonify({
            "location_id": location_id,
            "balance": str(balance),
            "movements": [m.to_dict() for m in movements],
        }), 200
    except SERVICE_ERRORS as e:
        return error_response(e)


@cash_drawer_bp.post("/<int:location_id>/movements")
@require_auth
@require_role("manager")
def record_movement_route(location_id: int):
    """
    Manual drawer movement. Body: {"movement_type", "amount", "notes"}

    Requires: manager or above
    """
    try:
        data = request.get_json(silent=True) or {}
        movement = cash_drawer_service.record_movement(
            location_id=location_id,
            movement_type=data.get("movement_type"),
            amount=data.get("amount"),
            staff_id=g.current_staff.id,
            notes=data.get("notes"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except SERVICE_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500
