"""
Shared pytest fixtures for the KEON Task Manager test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - department / manager / member / outsider: organisation rows
    - headers_for: builds the X-Profile-Id header of a profile
"""

import pytest

import keon as _keon_module
from keon import create_app
from keon.models import db as _db
from keon.services.cache_service import TaskCache

# Fixtures create rows in arbitrary order (a department before its manager).
_keon_module._SQLITE_FK_ENFORCEMENT = False


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        # ids are reused after the tables are recreated
        TaskCache.clear()
        yield
        TaskCache.clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organisation fixtures ────────────────────────────────────────────────


def _make_profile(name, department_id=None, can_manage_templates=False):
    from keon.models.org import Profile
    p = Profile(
        display_name=name,
        email=f"{name.lower().replace(' ', '.')}@keon.test",
        department_id=department_id,
        can_manage_templates=can_manage_templates,
    )
    _db.session.add(p)
    _db.session.flush()
    return p


@pytest.fixture()
def department():
    from keon.models.org import Department
    d = Department(name="Ressources Humaines")
    _db.session.add(d)
    _db.session.commit()
    return d


@pytest.fixture()
def manager(department):
    """Manager of ``department``; also allowed to manage templates."""
    p = _make_profile("Claire Manager", department.id, can_manage_templates=True)
    department.manager_id = p.id
    _db.session.commit()
    return p


@pytest.fixture()
def member(department):
    p = _make_profile("Hugo Member", department.id)
    _db.session.commit()
    return p


@pytest.fixture()
def outsider():
    """Profile outside every department."""
    p = _make_profile("Sam Outsider")
    _db.session.commit()
    return p


@pytest.fixture()
def headers_for():
    def _headers(profile):
        return {"X-Profile-Id": str(profile.id)}
    return _headers
