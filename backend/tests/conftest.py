"""
Pytest fixtures for LPG dealer backend tests.

Provides test database setup, two-tenant fixtures, role users with
session tokens, and catalog/cylinder/customer helpers.
"""

from datetime import date

import pytest

from lpg import create_app
from lpg.extensions import db
from lpg.services import auth_service, catalog_service, customer_service, cylinder_service, session_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SALE_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# TENANTS AND USERS
# =============================================================================


def register_dealer(name: str, code: str, username: str):
    """Organization + template roles + owner, the same path as self-signup."""
    return auth_service.register_organization(
        org_name=name,
        org_code=code,
        username=username,
        email=f"{username}@{code.lower()}.example",
        password=PASSWORD,
        full_name=f"{username.title()} Owner",
    )


@pytest.fixture(scope='function')
def owner_a(db_session):
    """Owner of Organization A (first tenant)."""
    return register_dealer("Org A - Agni Gas Agency", "AGNI", "owner_a")


@pytest.fixture(scope='function')
def owner_b(db_session):
    """Owner of Organization B (second tenant)."""
    return register_dealer("Org B - Bharat Fuels", "BHARAT", "owner_b")


@pytest.fixture(scope='function')
def org_a(owner_a):
    return owner_a.organization


@pytest.fixture(scope='function')
def org_b(owner_b):
    return owner_b.organization


def make_user(org, username: str, role: str):
    return auth_service.create_user(
        username=username,
        email=f"{username}@example.com",
        password=PASSWORD,
        org_id=org.id,
        roles=[role],
    )


@pytest.fixture(scope='function')
def sales_user(org_a):
    return make_user(org_a, "sales_a", "sales")


@pytest.fixture(scope='function')
def delivery_user(org_a):
    return make_user(org_a, "driver_a", "delivery")


@pytest.fixture(scope='function')
def inventory_user(org_a):
    return make_user(org_a, "stock_a", "inventory")


def token_for(user) -> str:
    _, token = session_service.create_session(user_id=user.id)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(owner_a):
    return auth_headers(token_for(owner_a))


@pytest.fixture(scope='function')
def owner_b_headers(owner_b):
    return auth_headers(token_for(owner_b))


@pytest.fixture(scope='function')
def sales_headers(sales_user):
    return auth_headers(token_for(sales_user))


@pytest.fixture(scope='function')
def delivery_headers(delivery_user):
    return auth_headers(token_for(delivery_user))


@pytest.fixture(scope='function')
def inventory_headers(inventory_user):
    return auth_headers(token_for(inventory_user))


# =============================================================================
# CATALOG, CYLINDERS, CUSTOMERS
# =============================================================================


def make_cylinder_product(org_id: int, *, capacity: str = "11.8kg", filled: int = 10,
                          price_cents: int = 90000, name: str | None = None):
    return catalog_service.create_product(org_id, None, {
        "name": name or f"Domestic LPG {capacity}",
        "brand": "Indane",
        "category": "LPG Cylinder",
        "cylinder_type": capacity,
        "price_cents": price_cents,
        "filled_count": filled,
    })


def make_accessory(org_id: int, *, stock: int = 20, price_cents: int = 35000, name: str = "LPG Regulator"):
    return catalog_service.create_product(org_id, None, {
        "name": name,
        "category": "Regulator",
        "unit": "piece",
        "price_cents": price_cents,
        "stock": stock,
    })


def register_cylinders(org_id: int, count: int, *, capacity: str = "11.8kg", start: int = 1, year: int = 2024):
    """Register `count` cylinders with explicit serials CYL-<year>-<start..>."""
    return [
        cylinder_service.register_cylinder(org_id, None, {
            "serial_number": f"CYL-{year}-{start + i:06d}",
            "capacity": capacity,
            "manufacturer": "Bharat Pressure Vessels",
            "manufacturing_date": date(year, 1, 15).isoformat(),
        })
        for i in range(count)
    ]


def make_customer(org_id: int, *, phone: str = "9876543210", name: str = "Asha Verma",
                  credit_limit_cents: int = 0, with_premises: bool = True):
    payload = {
        "name": name,
        "phone": phone,
        "customer_type": "INDIVIDUAL",
        "credit_limit_cents": credit_limit_cents,
    }
    if with_premises:
        payload["premises"] = [{
            "name": "Home",
            "street": "12 MG Road",
            "city": "Pune",
            "pincode": "411001",
        }]
    return customer_service.create_customer(org_id, None, payload)


@pytest.fixture(scope='function')
def cylinder_product(org_a):
    return make_cylinder_product(org_a.id, filled=10)


@pytest.fixture(scope='function')
def cylinders(org_a):
    return register_cylinders(org_a.id, 5)


@pytest.fixture(scope='function')
def accessory(org_a):
    return make_accessory(org_a.id)


@pytest.fixture(scope='function')
def customer(org_a):
    return make_customer(org_a.id)
