"""Module-level configuration values resolved from the settings store."""

from __future__ import annotations

import os
import secrets
from pathlib import Path

from services.settings import settings_manager

_manager = settings_manager


def _get_secret_or_plain(key: str):
    try:
        return _manager.get_secret(key)
    except RuntimeError:
        # Fall back to plain value if secrets cannot be decrypted.
        return _manager.get(key)


def _resolve_secret_key() -> str:
    env_value = os.environ.get("CASEDESK_SECRET_KEY")
    if env_value:
        return env_value
    stored = _get_secret_or_plain("flask_secret_key")
    if stored:
        return stored
    generated = secrets.token_urlsafe(32)
    try:
        _manager.set_secret("flask_secret_key", generated)
    except RuntimeError:
        _manager.set("flask_secret_key", generated)
    return generated


STORAGE_ROOT = Path(_manager.get("storage_root") or (_manager.paths.config_dir / "documentos"))
DATABASE_PATH = _manager.paths.config_dir / "casedesk.db"
SESSION_DIR = _manager.paths.config_dir / "session"

SECRET_KEY = _resolve_secret_key()

ALLOWED_EXTENSIONS = {"pdf", "doc", "docx", "txt", "png", "jpg", "jpeg", "xls", "xlsx"}

LOCKOUT_MAX_ATTEMPTS = _manager.get_int("lockout_max_attempts")
LOCKOUT_MINUTES = _manager.get_int("lockout_minutes")
CLIENT_ROLE_ID = _manager.get_int("default_client_role_id")

API_BASE_URL = os.environ.get("CASEDESK_API_URL") or _manager.get("api_base_url")
REQUEST_TIMEOUT_SECONDS = _manager.get_int("request_timeout_seconds")
