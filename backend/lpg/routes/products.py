# backend/lpg/routes/products.py
"""
Product catalog and brand API.

Cylinder products carry empty/filled/sold counters; accessories carry a
scalar stock. All writes are audited and tenant-scoped.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..models import Product
from ..models.catalog import PRODUCT_CATEGORIES, PRODUCT_TYPES, CYLINDER_CAPACITIES, UNITS
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body, bool_arg
from ..services import catalog_service
from ..services.tenant_service import require_owned


products_bp = Blueprint("products", __name__, url_prefix="/api/products")
brands_bp = Blueprint("brands", __name__, url_prefix="/api")


@products_bp.get("")
@require_auth
@require_permission(Capability.VIEW_PRODUCTS)
def list_products_route():
    """
    Query params:
    - category, product_type, cylinder_type, brand
    - is_active: true|false|all (default true)
    - search: name, sku, brand or barcode substring
    - stock_status: low|out
    - page, limit
    """
    page, limit = page_args()
    query = catalog_service.list_products(
        g.org_id,
        category=request.args.get("category"),
        product_type=request.args.get("product_type"),
        cylinder_type=request.args.get("cylinder_type"),
        brand=request.args.get("brand"),
        is_active=bool_arg("is_active", True),
        search=request.args.get("search"),
        stock_status=request.args.get("stock_status"),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@products_bp.get("/low-stock")
@require_auth
@require_permission(Capability.VIEW_PRODUCTS)
def low_stock_route():
    products = catalog_service.low_stock_products(g.org_id)
    return ok([p.to_dict() for p in products], count=len(products))


@products_bp.get("/cylinder-summary")
@require_auth
@require_permission(Capability.VIEW_PRODUCTS)
def cylinder_summary_route():
    return ok(catalog_service.cylinder_summary(g.org_id))


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission(Capability.VIEW_PRODUCTS)
def get_product_route(product_id: int):
    return ok(require_owned(Product, product_id, g.org_id, "Product").to_dict())


@products_bp.post("")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def create_product_route():
    """
    Required: name, category, price_cents.
    sku is generated from category and name when omitted.
    """
    product = catalog_service.create_product(g.org_id, g.current_user.id, json_body())
    return ok(product.to_dict(), message="Product created", status=201)


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def update_product_route(product_id: int):
    product = catalog_service.update_product(g.org_id, product_id, g.current_user.id, json_body())
    return ok(product.to_dict(), message="Product updated")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def delete_product_route(product_id: int):
    """Soft delete. Sale lines keep referencing the product."""
    product = catalog_service.deactivate_product(g.org_id, product_id, g.current_user.id)
    return ok(product.to_dict(), message="Product deactivated")


@products_bp.put("/<int:product_id>/cylinder-state")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def cylinder_state_route(product_id: int):
    """Body: state (empty|filled|sold), quantity, operation (add|subtract)"""
    data = json_body()
    product = catalog_service.adjust_cylinder_state(
        g.org_id,
        product_id,
        g.current_user.id,
        state=data.get("state"),
        quantity=data.get("quantity"),
        operation=data.get("operation", "add"),
    )
    return ok(product.to_dict(), message="Cylinder counters updated")


@products_bp.put("/<int:product_id>/stock")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def stock_route(product_id: int):
    """Body: quantity, operation (add|subtract). Accessories only."""
    data = json_body()
    product = catalog_service.adjust_stock(
        g.org_id,
        product_id,
        g.current_user.id,
        quantity=data.get("quantity"),
        operation=data.get("operation", "add"),
    )
    return ok(product.to_dict(), message="Stock updated")


@products_bp.put("/<int:product_id>/exchange")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def exchange_route(product_id: int):
    """Filled cylinders handed out for the same number of empties taken back."""
    data = json_body()
    product = catalog_service.exchange_cylinders(
        g.org_id, product_id, g.current_user.id, quantity=data.get("quantity")
    )
    return ok(product.to_dict(), message="Exchange recorded")


# -- Brands and reference data --

@brands_bp.get("/brands")
@require_auth
@require_permission(Capability.VIEW_PRODUCTS)
def list_brands_route():
    brands = catalog_service.list_brands(g.org_id, include_inactive=bool(bool_arg("include_inactive", False)))
    return ok([b.to_dict() for b in brands])


@brands_bp.post("/brands")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def create_brand_route():
    brand = catalog_service.create_brand(g.org_id, g.current_user.id, json_body())
    return ok(brand.to_dict(), message="Brand created", status=201)


@brands_bp.put("/brands/<int:brand_id>")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def update_brand_route(brand_id: int):
    brand = catalog_service.update_brand(g.org_id, brand_id, g.current_user.id, json_body())
    return ok(brand.to_dict(), message="Brand updated")


@brands_bp.delete("/brands/<int:brand_id>")
@require_auth
@require_permission(Capability.MANAGE_PRODUCTS)
def delete_brand_route(brand_id: int):
    brand = catalog_service.deactivate_brand(g.org_id, brand_id, g.current_user.id)
    return ok(brand.to_dict(), message="Brand deactivated")


@brands_bp.get("/categories")
@require_auth
@require_permission(Capability.VIEW_PRODUCTS)
def categories_route():
    return ok({
        "categories": list(PRODUCT_CATEGORIES),
        "product_types": list(PRODUCT_TYPES),
        "cylinder_types": list(CYLINDER_CAPACITIES),
        "units": list(UNITS),
    })
