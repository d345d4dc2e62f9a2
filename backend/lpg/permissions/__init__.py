# Overview: Permission system package.
# Re-exports the capability set, role templates and lookup helpers.

from .categories import PermissionCategory
from .definitions import (
    Capability,
    PERMISSION_DEFINITIONS,
)
from .roles import (
    ALL_CAPABILITIES,
    DEFAULT_ROLE_PERMISSIONS,
    DEFAULT_ROLE_DESCRIPTIONS,
    has_capability,
)
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "Capability",
    "PERMISSION_DEFINITIONS",
    "ALL_CAPABILITIES",
    "DEFAULT_ROLE_PERMISSIONS",
    "DEFAULT_ROLE_DESCRIPTIONS",
    "has_capability",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "validate_permission_code",
]
