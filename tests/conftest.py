"""
Pytest configuration and shared fixtures.

Provides a test application, database session, test client and small
factories that all test modules can use.  Uses the ``testing``
configuration, which points at an in-memory SQLite database, so every
test function gets a fresh schema.

Service tests take ``db_session`` (an application context is pushed for
them).  Route tests take ``client`` and create rows through the
factories, which open their own short-lived application context.
"""

import pytest

from readiness import create_app
from readiness.extensions import db as _db
from readiness.models.organization import Organization, OrganizationMember
from readiness.models.user import User
from readiness.services import auth_service
from readiness.utils import utcnow

DEFAULT_PASSWORD = "Password123"


@pytest.fixture()
def app():
    """
    Create a Flask application configured for testing.

    The schema is created from the models up front and dropped again
    once the test is done.
    """
    app = create_app("testing")
    with app.app_context():
        _db.create_all()

    yield app

    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def db_session(app):  # pylint: disable=redefined-outer-name
    """Provide the SQLAlchemy session inside an application context."""
    with app.app_context():
        yield _db.session


@pytest.fixture()
def client(app):  # pylint: disable=redefined-outer-name
    """
    Provide a Flask test client for making HTTP requests.

    Usage in tests::

        def test_health(client):
            response = client.get("/health")
            assert response.status_code == 200
    """
    return app.test_client()


@pytest.fixture(autouse=True)
def _reset_login_throttle():
    """The login throttle lives in process memory; start each test clean."""
    auth_service.reset_login_attempts()
    yield
    auth_service.reset_login_attempts()


# =========================================================================
# Factories
# =========================================================================


def create_user(
    email: str,
    role: str = "user",
    organization_id: int | None = None,
    password: str = DEFAULT_PASSWORD,
    department: str | None = None,
    member_role: str | None = None,
    is_active: bool = True,
) -> User:
    """
    Insert a confirmed user; call inside an application context.

    With ``member_role`` the user also gets a membership row in
    ``organization_id``.
    """
    user = User(
        email=email,
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        role=role,
        organization_id=organization_id,
        department=department,
        preferences={},
        is_active=is_active,
        email_confirmed_at=utcnow(),
    )
    user.set_password(password)
    _db.session.add(user)
    _db.session.flush()
    if member_role and organization_id:
        _db.session.add(
            OrganizationMember(
                organization_id=organization_id, user_id=user.id, role=member_role
            )
        )
    _db.session.commit()
    return user


def create_organization(name: str = "Acme Corp") -> Organization:
    """Insert an organization; call inside an application context."""
    org = Organization(name=name, settings={})
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def make_user(app):  # pylint: disable=redefined-outer-name
    """
    Factory fixture returning the new user's id.

    Usage::

        admin_id = make_user("admin@example.com", role="org_admin",
                             organization_id=org_id, member_role="owner")
    """

    def _make(email: str, **kwargs) -> int:
        with app.app_context():
            return create_user(email, **kwargs).id

    return _make


@pytest.fixture()
def make_org(app):  # pylint: disable=redefined-outer-name
    """Factory fixture returning the new organization's id."""

    def _make(name: str = "Acme Corp") -> int:
        with app.app_context():
            return create_organization(name).id

    return _make


@pytest.fixture()
def login(client):  # pylint: disable=redefined-outer-name
    """Factory fixture that signs in through the API and returns the response."""

    def _login(email: str, password: str = DEFAULT_PASSWORD):
        return client.post(
            "/api/auth/login", json={"email": email, "password": password}
        )

    return _login
