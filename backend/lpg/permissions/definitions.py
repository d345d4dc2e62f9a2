# Overview: The closed capability set and its display definitions.
# Each definition is: (code, name, description, category)

from enum import Enum

from .categories import PermissionCategory


class Capability(str, Enum):
    VIEW_PRODUCTS = "VIEW_PRODUCTS"
    MANAGE_PRODUCTS = "MANAGE_PRODUCTS"

    VIEW_CYLINDERS = "VIEW_CYLINDERS"
    MANAGE_CYLINDERS = "MANAGE_CYLINDERS"
    INSPECT_CYLINDERS = "INSPECT_CYLINDERS"

    VIEW_CUSTOMERS = "VIEW_CUSTOMERS"
    MANAGE_CUSTOMERS = "MANAGE_CUSTOMERS"
    MANAGE_CUSTOMER_CREDIT = "MANAGE_CUSTOMER_CREDIT"

    CREATE_SALE = "CREATE_SALE"
    VIEW_SALES = "VIEW_SALES"
    UPDATE_SALE_STATUS = "UPDATE_SALE_STATUS"
    VIEW_SALES_REPORTS = "VIEW_SALES_REPORTS"

    VIEW_DELIVERIES = "VIEW_DELIVERIES"
    MANAGE_DELIVERIES = "MANAGE_DELIVERIES"

    VIEW_SAFETY = "VIEW_SAFETY"
    MANAGE_SAFETY = "MANAGE_SAFETY"

    MANAGE_FEEDBACK = "MANAGE_FEEDBACK"

    MANAGE_USERS = "MANAGE_USERS"
    MANAGE_ROLES = "MANAGE_ROLES"
    VIEW_AUDIT_LOG = "VIEW_AUDIT_LOG"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"


# -- CATALOG --

CATALOG_PERMISSIONS = [
    (Capability.VIEW_PRODUCTS, "View Products", "View products, brands and stock levels", PermissionCategory.CATALOG),
    (Capability.MANAGE_PRODUCTS, "Manage Products", "Create, edit and restock products and brands", PermissionCategory.CATALOG),
]

# -- CYLINDERS --

CYLINDER_PERMISSIONS = [
    (Capability.VIEW_CYLINDERS, "View Cylinders", "View the cylinder registry and history", PermissionCategory.CYLINDERS),
    (Capability.MANAGE_CYLINDERS, "Manage Cylinders", "Register cylinders and change their status", PermissionCategory.CYLINDERS),
    (Capability.INSPECT_CYLINDERS, "Inspect Cylinders", "Record inspections and hydrostatic tests", PermissionCategory.CYLINDERS),
]

# -- CUSTOMERS --

CUSTOMER_PERMISSIONS = [
    (Capability.VIEW_CUSTOMERS, "View Customers", "View customer profiles and analytics", PermissionCategory.CUSTOMERS),
    (Capability.MANAGE_CUSTOMERS, "Manage Customers", "Create and edit customers and premises", PermissionCategory.CUSTOMERS),
    (Capability.MANAGE_CUSTOMER_CREDIT, "Manage Credit", "Adjust customer credit balances", PermissionCategory.CUSTOMERS),
]

# -- SALES --

SALES_PERMISSIONS = [
    (Capability.CREATE_SALE, "Create Sale", "Record sales and take payments", PermissionCategory.SALES),
    (Capability.VIEW_SALES, "View Sales", "View sales and invoices", PermissionCategory.SALES),
    (Capability.UPDATE_SALE_STATUS, "Update Sale Status", "Change delivery status of sales", PermissionCategory.SALES),
    (Capability.VIEW_SALES_REPORTS, "View Reports", "View sales reports and analytics", PermissionCategory.SALES),
]

# -- DELIVERY --

DELIVERY_PERMISSIONS = [
    (Capability.VIEW_DELIVERIES, "View Deliveries", "View personnel, routes and pending deliveries", PermissionCategory.DELIVERY),
    (Capability.MANAGE_DELIVERIES, "Manage Deliveries", "Manage personnel and assign routes", PermissionCategory.DELIVERY),
]

# -- SAFETY --

SAFETY_PERMISSIONS = [
    (Capability.VIEW_SAFETY, "View Safety", "View checklists, incidents and compliance", PermissionCategory.SAFETY),
    (Capability.MANAGE_SAFETY, "Manage Safety", "Complete checklists and report incidents", PermissionCategory.SAFETY),
]

# -- FEEDBACK --

FEEDBACK_PERMISSIONS = [
    (Capability.MANAGE_FEEDBACK, "Manage Feedback", "Review, answer and delete staff feedback", PermissionCategory.FEEDBACK),
]

# -- USERS / SYSTEM --

USER_PERMISSIONS = [
    (Capability.MANAGE_USERS, "Manage Users", "Create, edit and deactivate staff accounts", PermissionCategory.USERS),
    (Capability.MANAGE_ROLES, "Manage Roles", "Create roles and edit their capabilities", PermissionCategory.USERS),
]

SYSTEM_PERMISSIONS = [
    (Capability.VIEW_AUDIT_LOG, "View Audit Log", "View the business audit trail", PermissionCategory.SYSTEM),
    (Capability.SYSTEM_ADMIN, "System Admin", "Full administrative access", PermissionCategory.SYSTEM),
]


PERMISSION_DEFINITIONS = (
    CATALOG_PERMISSIONS
    + CYLINDER_PERMISSIONS
    + CUSTOMER_PERMISSIONS
    + SALES_PERMISSIONS
    + DELIVERY_PERMISSIONS
    + SAFETY_PERMISSIONS
    + FEEDBACK_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)

_defined = {perm[0] for perm in PERMISSION_DEFINITIONS}
if _defined != set(Capability):
    raise RuntimeError(f"Capabilities without a definition: {sorted(c.value for c in set(Capability) - _defined)}")
