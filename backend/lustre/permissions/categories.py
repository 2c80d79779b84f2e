# Overview: Permission category constants for grouping related capabilities.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    SALES = "SALES"
    CONSIGNMENTS = "CONSIGNMENTS"
    COMMISSION = "COMMISSION"
    SYSTEM = "SYSTEM"
