# Overview: All capability definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- SALES --

SALES_PERMISSIONS = [
    (
        "VIEW_SALES",
        "View Sales",
        "View committed sales, their lines and aggregates",
        PermissionCategory.SALES,
    ),
    (
        "CREATE_SALE",
        "Create Sale",
        "Price carts and commit sales at the till",
        PermissionCategory.SALES,
    ),
    (
        "EDIT_SALE",
        "Edit Sale",
        "Change quantity, price or discount on a committed sale",
        PermissionCategory.SALES,
    ),
    (
        "VOID_SALE",
        "Void Sale",
        "Void committed sales and restore their stock",
        PermissionCategory.SALES,
    ),
    (
        "ADD_LATE_PART_EXCHANGE",
        "Add Late Trade-In",
        "Attach a trade-in to an already committed sale (justification required)",
        PermissionCategory.SALES,
    ),
    (
        "APPROVE_NEGATIVE_SALE",
        "Approve Net-Negative Sale",
        "Approve sales where trade-in allowances exceed the sale total",
        PermissionCategory.SALES,
    ),
]


# -- CONSIGNMENTS --

CONSIGNMENT_PERMISSIONS = [
    (
        "VIEW_CONSIGNMENTS",
        "View Consignments",
        "View consignment settlements and supplier balances",
        PermissionCategory.CONSIGNMENTS,
    ),
    (
        "RECORD_PAYOUT",
        "Record Payout",
        "Mark a consignment settlement as paid",
        PermissionCategory.CONSIGNMENTS,
    ),
]


# -- COMMISSION --

COMMISSION_PERMISSIONS = [
    (
        "OVERRIDE_COMMISSION",
        "Override Commission",
        "Set or clear a per-sale commission override",
        PermissionCategory.COMMISSION,
    ),
    (
        "PAY_COMMISSION",
        "Pay Commission",
        "Record commission paid to a staff member for a period",
        PermissionCategory.COMMISSION,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "MANAGE_SETTINGS",
        "Manage Settings",
        "Change store-wide commission settings and staff commission terms",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    SALES_PERMISSIONS
    + CONSIGNMENT_PERMISSIONS
    + COMMISSION_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
