"""
Shared pytest fixtures for the Funnel Vault test suite.

Provides:
    - encryption_key: Fernet key in ENCRYPTION_KEY (session-scoped, autouse)
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
"""

import os

import pytest
from cryptography.fernet import Fernet

from funnel_vault import create_app
from funnel_vault.integrations.platform_gateway import platform_gateway
from funnel_vault.models import db as _db
from funnel_vault.models.content import Project
from funnel_vault.services import section_lock


@pytest.fixture(scope="session", autouse=True)
def encryption_key():
    """Set a stable ENCRYPTION_KEY for the entire test session.

    Without this, `encrypt_secret` / `decrypt_secret` raise RuntimeError
    because ENCRYPTION_KEY env var is not set in the test environment.
    """
    key = Fernet.generate_key().decode()
    os.environ["ENCRYPTION_KEY"] = key
    yield key


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
        section_lock.clear_all()
        platform_gateway.reset_circuit()
        yield
        section_lock.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """Create and return a committed Project."""
    p = Project(name="Test Funnel", owner_id="owner-1")
    _db.session.add(p)
    _db.session.commit()
    return p
