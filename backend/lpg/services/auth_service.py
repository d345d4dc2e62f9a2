# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication service.

Users belong to exactly one dealer organization. Passwords are hashed
with bcrypt (cost factor 12) and must meet the strength rules below.
Session tokens are managed separately (see session_service.py).
"""

import bcrypt
import re
from ..extensions import db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import AuditResource, User, Role, UserRole, Organization
from ..permissions import DEFAULT_ROLE_DESCRIPTIONS
from . import audit_service, permission_service
from lpg.time_utils import utcnow


class PasswordValidationError(ValidationFailed):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    full_name: str | None = None,
    phone: str | None = None,
    roles: list[str] | None = None,
    commit: bool = True,
) -> User:
    """
    Create a staff user inside an organization.

    Username and email uniqueness is scoped to the organization.
    Raises Conflict for duplicates, PasswordValidationError for weak
    passwords, NotFound for an unknown role.
    """
    org = db.session.get(Organization, org_id)
    if not org or not org.is_active:
        raise NotFound("Organization not found")

    if not username or not email:
        raise ValidationFailed("username and email are required")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise Conflict("Username or email already exists in this organization")

    user = User(
        org_id=org_id,
        username=username.strip(),
        email=email.strip().lower(),
        full_name=full_name,
        phone=phone,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.flush()

    for role_name in roles or []:
        assign_role(user.id, role_name, org_id=org_id, commit=False)

    if commit:
        db.session.commit()
    return user


def authenticate(username: str, password: str, org_code: str | None = None) -> User | None:
    """
    Authenticate by username or email.

    If org_code is provided, authentication is scoped to that dealer;
    otherwise the first active match across tenants is used.
    Updates last_login_at on success.
    """
    query = db.session.query(User).join(Organization, Organization.id == User.org_id).filter(
        db.or_(User.username == username, User.email == username.lower()),
        User.is_active.is_(True),
        Organization.is_active.is_(True),
    )
    if org_code:
        query = query.filter(Organization.code == org_code)

    for user in query.order_by(User.id).all():
        if verify_password(password, user.password_hash):
            user.last_login_at = utcnow()
            db.session.commit()
            return user

    return None


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise ValidationFailed("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()


def assign_role(user_id: int, role_name: str, *, org_id: int, commit: bool = True) -> UserRole:
    """Assign an org-scoped role to a user."""
    role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
    if not role:
        raise NotFound(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return user_role


def create_default_roles(org_id: int) -> list[Role]:
    """Create the template roles for an organization if they don't exist."""
    roles = []
    for name, desc in DEFAULT_ROLE_DESCRIPTIONS.items():
        role = db.session.query(Role).filter_by(org_id=org_id, name=name).first()
        if not role:
            role = Role(org_id=org_id, name=name, description=desc, is_system_role=True)
            db.session.add(role)
        roles.append(role)

    db.session.flush()
    return roles


def bootstrap_organization(org: Organization) -> None:
    """Default roles plus their capability grants for a fresh organization."""
    create_default_roles(org.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(org.id)


def register_organization(
    *,
    org_name: str,
    org_code: str | None,
    username: str,
    email: str,
    password: str,
    full_name: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    city: str | None = None,
) -> User:
    """
    Self-service dealer signup: organization, template roles, and an
    owner user, all in one transaction.
    """
    if not org_name:
        raise ValidationFailed("org_name is required")

    if org_code:
        org_code = org_code.strip().upper()
        if db.session.query(Organization).filter_by(code=org_code).first():
            raise Conflict("Organization code already in use")

    # Validate before anything is written
    validate_password_strength(password)

    org = Organization(
        name=org_name.strip(),
        code=org_code,
        owner_name=full_name,
        phone=phone,
        address=address,
        city=city,
        is_active=True,
    )
    db.session.add(org)
    db.session.flush()

    bootstrap_organization(org)

    user = create_user(
        username=username,
        email=email,
        password=password,
        org_id=org.id,
        full_name=full_name,
        phone=phone,
        roles=["owner"],
        commit=False,
    )
    audit_service.record(
        org_id=org.id,
        user_id=user.id,
        action="CREATE",
        resource=AuditResource.ORGANIZATION,
        resource_id=org.id,
        after=org.to_dict(),
    )
    db.session.commit()
    return user
