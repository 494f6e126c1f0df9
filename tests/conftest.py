"""Shared fixtures.

The settings store resolves its directory at import time, so the
environment is pointed at a throw-away config directory before any
project module is imported.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

_CONFIG_HOME = tempfile.mkdtemp(prefix="casedesk-test-")
os.environ["XDG_CONFIG_HOME"] = _CONFIG_HOME
os.environ.setdefault("CASEDESK_SECRET_KEY", "test-secret-key")

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from argon2 import PasswordHasher  # noqa: E402

from services.security import Argon2PasswordHasher  # noqa: E402


@pytest.fixture(scope="session")
def fast_hasher():
    """Real Argon2 with the cheapest parameters the library accepts."""
    return Argon2PasswordHasher(PasswordHasher(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def flask_app(tmp_path, fast_hasher):
    from app import app

    saved = {key: app.config.get(key) for key in ("DATABASE", "STORAGE_ROOT", "PASSWORD_HASHER", "TESTING")}
    app.config.update(
        DATABASE=str(tmp_path / "casedesk.db"),
        STORAGE_ROOT=str(tmp_path / "documentos"),
        PASSWORD_HASHER=fast_hasher,
        TESTING=True,
    )
    yield app
    app.config.update(saved)


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def app_ctx(flask_app):
    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def make_account(app_ctx, fast_hasher):
    """Create an account directly in the store and return its id."""
    from services import users

    def _make(username="jdoe", password="s3cret!", rol_id=1, email=None, **extra):
        data = {
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
            "rol_id": rol_id,
            "nombre_completo": extra.pop("nombre_completo", "John Doe"),
        }
        data.update(extra)
        return users.create_user(data, hasher=fast_hasher)

    return _make
