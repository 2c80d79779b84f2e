# Overview: Capability checks for staff members and denial logging.

"""
Capability Checking and Security Event Logging

WHY: Editing, voiding and late trade-in additions change committed financial
records, so each is gated on a capability of the acting staff member.

DESIGN PRINCIPLES:
- Fail closed: unknown roles and inactive staff have no capabilities
- Log denials only: granted checks are not logged
- Roles are cumulative: staff < manager < owner
"""

from ..extensions import db
from ..models import Staff, SecurityEvent
from ..models.staff import ROLE_HIERARCHY
from ..permissions import DEFAULT_ROLE_PERMISSIONS
from ..time_utils import utcnow
from .errors import PermissionDeniedError


def log_security_event(
    staff_id: int | None,
    event_type: str,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
) -> SecurityEvent:
    """
    Log a security event to the audit trail.

    Committed on its own: denials are checked before any business write, so
    the session holds nothing else at this point.
    """
    event = SecurityEvent(
        staff_id=staff_id,
        event_type=event_type,
        resource=resource,
        action=action,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event


def get_staff_permissions(staff: Staff | None) -> set[str]:
    """All capability codes for a staff member (empty when inactive)."""
    if staff is None or not staff.is_active:
        return set()
    return set(DEFAULT_ROLE_PERMISSIONS.get(staff.role, []))


def staff_has_permission(staff: Staff | None, permission_code: str) -> bool:
    return permission_code in get_staff_permissions(staff)


def is_at_least_role(staff: Staff | None, minimum_role: str) -> bool:
    """Role hierarchy check: staff < manager < owner."""
    if staff is None or not staff.is_active or staff.role not in ROLE_HIERARCHY:
        return False
    return ROLE_HIERARCHY.index(staff.role) >= ROLE_HIERARCHY.index(minimum_role)


def require_permission(staff: Staff | None, permission_code: str, resource: str | None = None) -> None:
    """
    Require a capability, raise PermissionDeniedError if missing.

    Usage:
        require_permission(actor, "VOID_SALE", resource=f"sale:{sale_id}")
    """
    if staff_has_permission(staff, permission_code):
        return

    log_security_event(
        staff_id=staff.id if staff is not None else None,
        event_type="PERMISSION_DENIED",
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}", permission_code=permission_code)


def require_role(staff: Staff | None, minimum_role: str, resource: str | None = None) -> None:
    if is_at_least_role(staff, minimum_role):
        return

    log_security_event(
        staff_id=staff.id if staff is not None else None,
        event_type="ROLE_DENIED",
        resource=resource,
        action=f"ROLE:{minimum_role}",
        reason=f"Requires {minimum_role} or above",
    )
    raise PermissionDeniedError(f"Requires {minimum_role} or above")
