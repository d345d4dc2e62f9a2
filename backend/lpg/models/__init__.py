from .tenancy import Organization
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .catalog import Brand, Product
from .customers import Customer, Premises
from .cylinders import Cylinder, CylinderHistory, CylinderInspection
from .sales import Sale, SaleLine, SaleLineCylinder, SalePayment
from .delivery import DeliveryPersonnel, DeliveryRoute, DeliveryRouteStop
from .safety import SafetyChecklist, SafetyChecklistItem, SafetyIncident
from .feedback import Feedback
from .audit import AuditLog, AuditResource

# Every audit resource kind resolves to exactly one model.
AUDIT_RESOURCE_MODELS = {
    AuditResource.ORGANIZATION: Organization,
    AuditResource.USER: User,
    AuditResource.ROLE: Role,
    AuditResource.BRAND: Brand,
    AuditResource.PRODUCT: Product,
    AuditResource.CYLINDER: Cylinder,
    AuditResource.CUSTOMER: Customer,
    AuditResource.PREMISES: Premises,
    AuditResource.SALE: Sale,
    AuditResource.DELIVERY_PERSONNEL: DeliveryPersonnel,
    AuditResource.DELIVERY_ROUTE: DeliveryRoute,
    AuditResource.SAFETY_CHECKLIST: SafetyChecklist,
    AuditResource.SAFETY_INCIDENT: SafetyIncident,
    AuditResource.FEEDBACK: Feedback,
}

_unmapped = set(AuditResource) - set(AUDIT_RESOURCE_MODELS)
if _unmapped:
    raise RuntimeError(f"Audit resources without a model: {sorted(r.value for r in _unmapped)}")

__all__ = [
    'Organization',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'Brand', 'Product',
    'Customer', 'Premises',
    'Cylinder', 'CylinderHistory', 'CylinderInspection',
    'Sale', 'SaleLine', 'SaleLineCylinder', 'SalePayment',
    'DeliveryPersonnel', 'DeliveryRoute', 'DeliveryRouteStop',
    'SafetyChecklist', 'SafetyChecklistItem', 'SafetyIncident',
    'Feedback',
    'AuditLog', 'AuditResource', 'AUDIT_RESOURCE_MODELS',
]
