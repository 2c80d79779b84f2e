# Overview: Default role -> capability mapping.
# Roles are cumulative: staff < manager < owner.

_STAFF = [
    "VIEW_SALES",
    "CREATE_SALE",
    "VIEW_CONSIGNMENTS",
]

_MANAGER = _STAFF + [
    "EDIT_SALE",
    "VOID_SALE",
    "ADD_LATE_PART_EXCHANGE",
    "APPROVE_NEGATIVE_SALE",
    "OVERRIDE_COMMISSION",
    "RECORD_PAYOUT",
    "PAY_COMMISSION",
]

_OWNER = _MANAGER + [
    "MANAGE_SETTINGS",
]

DEFAULT_ROLE_PERMISSIONS = {
    "staff": _STAFF,
    "manager": _MANAGER,
    "owner": _OWNER,
}
