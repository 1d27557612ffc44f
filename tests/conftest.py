"""
Shared fixtures: an in-memory SQLite store, a local bucket and an identity provider.
"""

import pytest

from medrecords.database import create_db_engine, create_schema
from medrecords.identity import IdentityProvider
from medrecords.rbac import load_access_context
from medrecords.storage import LocalStorage


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite://")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def identity(engine):
    return IdentityProvider(engine, secret_key="test-secret-key-for-hs256-signing!")


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(root=str(tmp_path), bucket="medical-files")


@pytest.fixture
def sign_up(identity, engine):
    """Sign up a user and return (session, AccessContext)."""
    def _sign_up(email, role, full_name=None, password="secret123"):
        session = identity.sign_up(email, password, full_name or email.split("@")[0], role)
        return session, load_access_context(identity, engine, session.token)
    return _sign_up
