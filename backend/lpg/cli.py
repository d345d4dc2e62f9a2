# Overview: Flask CLI command groups for bootstrap, demo data and inspection.

# backend/lpg/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--org "Gas Point" --org-code GASPT --username owner ...]
#   Idempotent bootstrap: creates tables, a dealer organization, default roles,
#   permissions and an owner user.
# - python -m flask system seed-demo --org-id 1
#   Sample brands, products, cylinders and a customer for a dealer.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all dealer organizations.
#
# User inspection/bootstrap:
# - python -m flask users list [--org-id 1]
#   List users with roles and active status.
# - python -m flask users create --org-id 1 --username ravi --email ravi@dealer.local --password "Password123!" --role sales
#   Create a user (prompts if options are omitted).
#
# Permission inspection:
# - python -m flask perms list [--org-id 1 --role sales] [--category SALES]
#   List capabilities (optionally filtered by role or category).
# - python -m flask perms check owner CREATE_SALE [--org-id 1]
#   Check whether a user holds a capability.
#
# Maintenance:
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

import click
from datetime import date, timedelta
from flask.cli import with_appcontext

from .errors import ApiError
from .extensions import db
from .models import Organization, Permission, Role, SecurityEvent, User
from .permissions import DEFAULT_ROLE_DESCRIPTIONS, validate_permission_code
from .services import auth_service, catalog_service, customer_service, cylinder_service, permission_service
from .time_utils import utcnow


DEFAULT_PASSWORD = "Password123!"


def _resolve_org(org_id):
    if org_id:
        return db.session.get(Organization, org_id)
    return db.session.query(Organization).order_by(Organization.id).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Gas Agency', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--username', default='owner', help='Owner username')
@click.option('--email', default='owner@lpg.local', help='Owner email')
@click.option('--password', default=DEFAULT_PASSWORD, help='Owner password')
@with_appcontext
def init_system(org_name, org_code, username, email, password):
    """
    Initialize the LPG dealer backend: schema, organization, roles and owner.

    MULTI-TENANT: the organization is the tenant root; the owner user
    receives the `owner` role, which holds every capability.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing LPG dealer backend...")

    db.create_all()
    click.echo("PASS Schema ready")

    org = db.session.query(Organization).filter_by(code=org_code.upper()).first()
    if org:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")
        auth_service.bootstrap_organization(org)
        db.session.commit()
        click.echo(f"PASS Roles and permissions refreshed: {', '.join(DEFAULT_ROLE_DESCRIPTIONS)}")
        return

    try:
        owner = auth_service.register_organization(
            org_name=org_name,
            org_code=org_code,
            username=username,
            email=email,
            password=password,
            full_name="Owner",
        )
    except ApiError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return

    org = owner.organization
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    click.echo(f"PASS Roles created: {', '.join(DEFAULT_ROLE_DESCRIPTIONS)}")
    click.echo(f"PASS Created owner: {owner.username} ({owner.email})")

    click.echo("\n" + "="*60)
    click.echo("DONE LPG dealer backend initialized")
    click.echo("="*60)
    if password == DEFAULT_PASSWORD:
        click.echo("\nSECURITY Default owner password in use. CHANGE IN PRODUCTION!")
    click.echo("")


@system_group.command('seed-demo')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@with_appcontext
def seed_demo(org_id):
    """
    Seed sample catalog, cylinders and a customer for one dealer.

    Safe to re-run: brands and customers that already exist are skipped.
    """
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found. Run 'python -m flask system init' first.")
        return

    existing_brands = {b.name.lower() for b in catalog_service.list_brands(org.id, include_inactive=True)}
    for name in ("Indane", "HP Gas", "Bharat Gas"):
        if name.lower() in existing_brands:
            continue
        catalog_service.create_brand(org.id, None, {"name": name})
        click.echo(f"PASS Brand: {name}")

    products = [
        {"name": "Domestic Cylinder 11.8kg", "category": "LPG Cylinder", "cylinder_type": "11.8kg",
         "brand": "Indane", "price_cents": 90000, "deposit_cents": 220000,
         "filled_count": 10, "empty_count": 5, "min_stock": 3},
        {"name": "Commercial Cylinder 45.4kg", "category": "LPG Cylinder", "cylinder_type": "45.4kg",
         "brand": "HP Gas", "price_cents": 350000, "deposit_cents": 450000,
         "filled_count": 4, "empty_count": 2, "min_stock": 2},
        {"name": "Standard Regulator", "category": "Regulator", "price_cents": 45000, "stock": 25, "min_stock": 5},
        {"name": "Suraksha Hose 1.5m", "category": "Gas Pipe", "unit": "piece", "price_cents": 19000, "stock": 40},
    ]
    for payload in products:
        if catalog_service.list_products(org.id, search=payload["name"]).first():
            continue
        product = catalog_service.create_product(org.id, None, payload)
        click.echo(f"PASS Product: {product.name} ({product.sku})")

    for capacity, count in (("11.8kg", 10), ("45.4kg", 4)):
        have = cylinder_service.list_cylinders(org.id, capacity=capacity).count()
        for _ in range(max(count - have, 0)):
            cylinder_service.register_cylinder(org.id, None, {
                "capacity": capacity,
                "manufacturer": "Demo Cylinders Ltd",
                "manufacturing_date": (date.today() - timedelta(days=365)).isoformat(),
            })
        click.echo(f"PASS Cylinders {capacity}: {max(count, have)} registered")

    if not customer_service.list_customers(org.id, search="9876543210").first():
        customer_service.create_customer(org.id, None, {
            "name": "Asha Verma",
            "phone": "9876543210",
            "customer_type": "INDIVIDUAL",
            "premises": [{"name": "Home", "street": "12 Lake Road", "city": "Pune", "pincode": "411001"}],
        })
        click.echo("PASS Customer: Asha Verma")

    click.echo(f"\nDONE Demo data ready for {org.name} (ID: {org.id})\n")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) inspection commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    click.echo("="*72)

    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")

    click.echo("="*72 + "\n")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(DEFAULT_ROLE_DESCRIPTIONS)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(org_id, username, email, password, role):
    """
    Create a new user in an organization.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    - At least one special character
    """
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL No organization found. Run 'python -m flask system init' first.")
        return

    try:
        auth_service.validate_password_strength(password)
        user = auth_service.create_user(
            username=username,
            email=email,
            password=password,
            org_id=org.id,
            roles=[role],
        )
    except auth_service.PasswordValidationError as e:
        db.session.rollback()
        click.echo(f"FAIL Password validation failed: {e.message}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except ApiError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {e.message}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{role}'")
    click.echo(f"     Organization: {org.name} (ID: {org.id})")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    """List all users with their roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)
    users = query.order_by(User.org_id, User.username).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Org':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*100)

    for user in users:
        roles_str = ", ".join(user.role_names()) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.org_id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {roles_str}")

    click.echo("="*100 + "\n")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--org-id', type=int, help='Organization for --role (uses default if not specified)')
@click.option('--role', help='Filter by role name')
@click.option('--category', help='Filter by category')
@with_appcontext
def list_permissions_cli(org_id, role, category):
    """List capabilities, optionally filtered by role or category."""
    permission_service.initialize_permissions()
    db.session.commit()

    if role:
        org = _resolve_org(org_id)
        role_obj = None
        if org:
            role_obj = db.session.query(Role).filter_by(org_id=org.id, name=role).first()
        if not role_obj:
            click.echo(f"FAIL Role '{role}' not found")
            return

        codes = role_obj.permission_codes()
        click.echo(f"\n{'='*80}")
        click.echo(f"Permissions for role: {role.upper()} ({org.name})")
        click.echo(f"{'='*80}\n")
        for code in codes:
            click.echo(f"  {code}")
        click.echo(f"\n Total: {len(codes)} permissions\n")
        return

    query = db.session.query(Permission)
    if category:
        query = query.filter_by(category=category.upper())
    perms = query.order_by(Permission.category, Permission.code).all()

    current_category = None
    for perm in perms:
        if perm.category != current_category:
            click.echo(f"\nCATEGORY {perm.category}")
            click.echo("-"*80)
            current_category = perm.category
        click.echo(f"  {perm.code:<28} {perm.name}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('check')
@click.argument('username')
@click.argument('permission_code')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@with_appcontext
def check_permission_cli(username, permission_code, org_id):
    """Check if a user has a specific capability."""
    permission_code = permission_code.upper()
    if not validate_permission_code(permission_code):
        click.echo(f"FAIL Unknown capability '{permission_code}'")
        return

    org = _resolve_org(org_id)
    user = None
    if org:
        user = db.session.query(User).filter_by(org_id=org.id, username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    if permission_service.user_has_permission(user.id, permission_code):
        click.echo(f"PASS User '{username}' HAS permission '{permission_code}'")
    else:
        click.echo(f"FAIL User '{username}' DOES NOT HAVE permission '{permission_code}'")

    roles = permission_service.get_user_role_names(user.id)
    all_perms = permission_service.get_user_permissions(user.id)

    click.echo(f"\nUser roles: {', '.join(roles)}")
    click.echo(f"Total permissions: {len(all_perms)}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days. The business audit trail is never pruned.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = (
        db.session.query(SecurityEvent)
        .filter(SecurityEvent.occurred_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(maintenance_group)
