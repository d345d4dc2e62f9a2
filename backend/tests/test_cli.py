"""
Flask CLI commands run through the test CLI runner.
"""

from datetime import timedelta

import pytest

from lpg.extensions import db
from lpg.models import Organization, Role, SecurityEvent, User
from lpg.time_utils import utcnow

from conftest import make_user


@pytest.fixture
def runner(app, db_session):
    return app.test_cli_runner()


def _init(runner):
    result = runner.invoke(args=["system", "init", "--org", "Laxmi Gas Agency", "--org-code", "laxmi"])
    assert result.exit_code == 0, result.output
    return result


class TestSystemInit:

    def test_creates_dealer_roles_and_owner(self, runner):
        result = _init(runner)
        assert "DONE LPG dealer backend initialized" in result.output
        assert "Default owner password in use" in result.output

        org = db.session.query(Organization).filter_by(code="LAXMI").one()
        owner = db.session.query(User).filter_by(org_id=org.id, username="owner").one()
        assert owner.email == "owner@lpg.local"
        names = {r.name for r in db.session.query(Role).filter_by(org_id=org.id)}
        assert {"owner", "manager", "sales", "delivery", "inventory"} <= names

    def test_rerun_reuses_organization(self, runner):
        _init(runner)
        result = _init(runner)
        assert "Using existing organization: Laxmi Gas Agency" in result.output
        assert db.session.query(Organization).count() == 1
        assert db.session.query(User).count() == 1


class TestPermsCheck:

    def test_owner_has_capability(self, runner):
        _init(runner)
        result = runner.invoke(args=["perms", "check", "owner", "manage_users"])
        assert result.exit_code == 0
        assert "PASS User 'owner' HAS permission 'MANAGE_USERS'" in result.output
        assert "User roles: owner" in result.output

    def test_sales_user_lacks_capability(self, runner):
        _init(runner)
        org = db.session.query(Organization).filter_by(code="LAXMI").one()
        make_user(org, "counter", "sales")

        result = runner.invoke(args=["perms", "check", "counter", "MANAGE_USERS", "--org-id", str(org.id)])
        assert "DOES NOT HAVE permission 'MANAGE_USERS'" in result.output

    def test_unknown_capability(self, runner):
        _init(runner)
        result = runner.invoke(args=["perms", "check", "owner", "FLY_TO_MOON"])
        assert "FAIL Unknown capability 'FLY_TO_MOON'" in result.output

    def test_unknown_user(self, runner):
        _init(runner)
        result = runner.invoke(args=["perms", "check", "ghost", "CREATE_SALE"])
        assert "FAIL User 'ghost' not found" in result.output


def test_orgs_list(runner):
    _init(runner)
    result = runner.invoke(args=["orgs", "list"])
    assert "Laxmi Gas Agency" in result.output
    assert "LAXMI" in result.output


def test_cleanup_security_events(runner):
    _init(runner)
    org_id = db.session.query(Organization.id).scalar()
    db.session.add_all([
        SecurityEvent(org_id=org_id, event_type="LOGIN_FAILED", success=False,
                      occurred_at=utcnow() - timedelta(days=120)),
        SecurityEvent(org_id=org_id, event_type="LOGIN_FAILED", success=False,
                      occurred_at=utcnow() - timedelta(days=5)),
    ])
    db.session.commit()

    result = runner.invoke(args=["maintenance", "cleanup-security-events", "--retention-days", "90"])
    assert "Deleted 1 security events older than 90 days." in result.output
    assert db.session.query(SecurityEvent).count() == 1
