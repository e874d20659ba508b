"""
Shared pytest fixtures for the HRMS funding allocation test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - grant / grant_item / org_grant: registry fixtures
    - employee / make_employment: personnel fixtures
    - auth_headers: Bearer header factory for role-based tests
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from hrms import create_app
from hrms.models import db as _db
from hrms.models.employment import Employee, Employment
from hrms.models.grant import Grant, GrantItem


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def auth_headers(app):
    """Return a factory: auth_headers("hr_viewer") -> {"Authorization": "Bearer ..."}."""
    from hrms.services.jwt_service import generate_access_token

    def _make(*roles, user_id="u-1", name="Test User"):
        token = generate_access_token(user_id, list(roles), name=name)
        return {"Authorization": f"Bearer {token}"}

    return _make


# ── Registry fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def grant():
    g = Grant(code="GR-001", name="Health Outreach", organization="SMRU")
    _db.session.add(g)
    _db.session.commit()
    return g


@pytest.fixture()
def grant_item(grant):
    """Position line with two slots."""
    item = GrantItem(
        grant_id=grant.id,
        grant_position="Field Officer",
        grant_salary=Decimal("30000.00"),
        grant_position_number=2,
        budgetline_code="BL-01",
    )
    _db.session.add(item)
    _db.session.commit()
    return item


@pytest.fixture()
def single_slot_item(grant):
    item = GrantItem(
        grant_id=grant.id,
        grant_position="Project Manager",
        grant_position_number=1,
        budgetline_code="BL-02",
    )
    _db.session.add(item)
    _db.session.commit()
    return item


@pytest.fixture()
def org_grant():
    g = Grant(code="S0031", name="Other Fund", organization="SMRU")
    _db.session.add(g)
    _db.session.commit()
    return g


# ── Personnel fixtures ───────────────────────────────────────────────────


@pytest.fixture()
def employee():
    e = Employee(staff_id="0001", first_name="Aye", last_name="Mon", organization="SMRU")
    _db.session.add(e)
    _db.session.commit()
    return e


@pytest.fixture()
def make_employment(employee):
    """Factory creating an on-probation employment through the service layer.

    Defaults: started 30 days ago, probation ends in 60 days,
    probation_salary=20000, pass_probation_salary=32000.
    """
    from hrms.services.employment_service import create_employment

    def _make(**overrides):
        data = {
            "employee_id": employee.id,
            "start_date": (date.today() - timedelta(days=30)).isoformat(),
            "pass_probation_date": (date.today() + timedelta(days=60)).isoformat(),
            "probation_salary": "20000",
            "pass_probation_salary": "32000",
        }
        data.update(overrides)
        return create_employment(data, actor="tester")

    return _make


@pytest.fixture()
def employment(make_employment) -> Employment:
    return make_employment()


@pytest.fixture()
def second_employee():
    e = Employee(staff_id="0002", first_name="Ko", last_name="Lin", organization="SMRU")
    _db.session.add(e)
    _db.session.commit()
    return e
