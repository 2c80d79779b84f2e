# Overview: Request authentication, capability decorators and error translation for API routes.

from functools import wraps
from flask import request, jsonify, g

from .permissions import is_known_capability
from .services import staff_service, permission_service
from .services.errors import (
    ApprovalRequiredError,
    CommitFailure,
    ConcurrentModificationError,
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    SaleError,
    SaleStateError,
)
from .validation import ValidationError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_staff')


def require_auth(f):
    """
    Require a bearer token and establish g.current_staff.

    Returns 401 if:
    - No Authorization header
    - Unknown token
    - Staff member deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        staff = staff_service.resolve_token(token)
        if staff is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_staff = staff
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a capability. Denials are logged to security_events."""
    if not is_known_capability(permission_code):
        raise ValueError(f"Unknown permission code: {permission_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    g.current_staff,
                    permission_code,
                    resource=f"{request.method} {request.path}",
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_role(minimum_role: str):
    """Require a role at or above minimum_role (staff < manager < owner)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_role(
                    g.current_staff,
                    minimum_role,
                    resource=f"{request.method} {request.path}",
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_role": minimum_role,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


# SaleError subclass -> HTTP status
_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (InsufficientStockError, 409),
    (ConcurrentModificationError, 409),
    (SaleStateError, 409),
    (ApprovalRequiredError, 403),
    (CommitFailure, 500),
)


def error_response(e: Exception):
    """JSON body and status for a typed service error."""
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e), "fields": e.fields}), 400
    if isinstance(e, PermissionDeniedError):
        return jsonify({
            "error": "Permission denied",
            "required_permission": e.permission_code,
            "message": str(e),
        }), 403
    if isinstance(e, SaleError):
        for error_cls, status in _STATUS_BY_ERROR:
            if isinstance(e, error_cls):
                return jsonify({"error": str(e), "details": e.details}), status
        return jsonify({"error": str(e), "details": e.details}), 400
    raise TypeError(f"not a service error: {type(e).__name__}")
