"""
Shared pytest fixtures for the QA tracking dashboard test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - systems: the three default systems, keyed by name
    - cycle: an open test cycle
    - make_requirement: factory creating a committed requirement
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services import requirement_service


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def systems():
    """쇼핑몰 / 공급사 / 관리자, committed. Returns {name: System}."""
    requirement_service.seed_systems()
    _db.session.commit()
    return {s.name: s for s in requirement_service.list_systems()}


@pytest.fixture()
def cycle():
    c = requirement_service.create_cycle("1차 QA")
    _db.session.commit()
    return c


@pytest.fixture()
def make_requirement(systems):
    """Factory: make_requirement(system="쇼핑몰", **fields) → committed Requirement."""
    def _make(system="쇼핑몰", **fields):
        data = {
            "system_id": systems[system].id,
            "feature_name": fields.pop("feature_name", "장바구니 담기"),
            "original_spec": fields.pop("original_spec", "상품을 장바구니에 담을 수 있다"),
        }
        data.update(fields)
        req = requirement_service.create_requirement(data)
        _db.session.commit()
        return req
    return _make
