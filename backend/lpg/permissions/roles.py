# Overview: Default role templates and the typed capability predicate.

from .definitions import Capability

C = Capability

ALL_CAPABILITIES = frozenset(Capability)

_ADMINISTRATION = frozenset({C.MANAGE_USERS, C.MANAGE_ROLES, C.SYSTEM_ADMIN})

DEFAULT_ROLE_PERMISSIONS: dict[str, frozenset[Capability]] = {
    "owner": ALL_CAPABILITIES,
    "admin": ALL_CAPABILITIES,
    "manager": ALL_CAPABILITIES - _ADMINISTRATION,
    "sales": frozenset({
        C.VIEW_PRODUCTS,
        C.VIEW_CYLINDERS,
        C.VIEW_CUSTOMERS,
        C.MANAGE_CUSTOMERS,
        C.CREATE_SALE,
        C.VIEW_SALES,
        C.VIEW_SAFETY,
        C.MANAGE_SAFETY,
    }),
    "delivery": frozenset({
        C.VIEW_CUSTOMERS,
        C.VIEW_SALES,
        C.UPDATE_SALE_STATUS,
        C.VIEW_DELIVERIES,
        C.VIEW_SAFETY,
        C.MANAGE_SAFETY,
    }),
    "inventory": frozenset({
        C.VIEW_PRODUCTS,
        C.MANAGE_PRODUCTS,
        C.VIEW_CYLINDERS,
        C.MANAGE_CYLINDERS,
        C.INSPECT_CYLINDERS,
    }),
}

DEFAULT_ROLE_DESCRIPTIONS = {
    "owner": "Dealer owner, full access",
    "admin": "Full system access",
    "manager": "Shop management, reports and approvals",
    "sales": "Counter sales and customer service",
    "delivery": "Delivery staff",
    "inventory": "Stock and cylinder management",
}


def has_capability(role: str, capability: Capability | str) -> bool:
    """
    True if the default template for `role` grants `capability`.

    Unknown roles and unknown capability strings are denied.
    """
    try:
        cap = Capability(capability)
    except ValueError:
        return False
    return cap in DEFAULT_ROLE_PERMISSIONS.get(role, frozenset())
