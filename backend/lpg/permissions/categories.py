# Overview: Permission category constants for grouping related capabilities.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    CATALOG = "CATALOG"
    CYLINDERS = "CYLINDERS"
    CUSTOMERS = "CUSTOMERS"
    SALES = "SALES"
    DELIVERY = "DELIVERY"
    SAFETY = "SAFETY"
    FEEDBACK = "FEEDBACK"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
