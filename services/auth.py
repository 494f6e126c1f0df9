"""Login verification with failed-attempt lockout.

The service resolves an account by username or email, refuses locked or
disabled accounts before touching the password, delegates verification to
an injected hasher and records the outcome on the account row:

* a wrong password bumps ``failed_attempts``; reaching ``max_attempts``
  also sets ``locked_until`` to ``now + lockout`` in the same write;
* a correct password clears both and stamps ``last_access``.

Lockouts expire by wall-clock comparison only. Concurrent failures may lose
an increment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from services.db import utc_now

logger = logging.getLogger("casedesk.auth")

INVALID_CREDENTIALS_MSG = "Invalid credentials."


class AuthError(Exception):
    """Base class for login failures; carries the HTTP status and a safe message."""

    status = 500
    default_message = "Internal server error."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    status = 400
    default_message = "Invalid request."


class InvalidCredentials(AuthError):
    status = 401
    default_message = INVALID_CREDENTIALS_MSG


class AccountLocked(AuthError):
    status = 403
    default_message = "Account temporarily locked. Please try again later."


class AccountDisabled(AuthError):
    status = 403
    default_message = "This account has been disabled."


class InternalError(AuthError):
    status = 500
    default_message = "Unable to verify credentials."


class AccountStore(Protocol):
    def find_by(self, field: str, value: str) -> List[Dict[str, Any]]: ...

    def update(self, account_id: int, changes: Dict[str, Any]) -> None: ...


class PasswordVerifier(Protocol):
    def hash(self, plain_text: str) -> str: ...

    def verify(self, plain_text: str, hashed: str) -> bool: ...


@dataclass(frozen=True)
class AuthenticatedAccount:
    id: int
    username: str
    email: str
    nombre_completo: Optional[str]
    verificado: bool
    rol: Dict[str, Any]
    cliente_id: Optional[int] = None
    empleado_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "nombre_completo": self.nombre_completo,
            "verificado": self.verificado,
            "cliente_id": self.cliente_id,
            "empleado_id": self.empleado_id,
            "rol": dict(self.rol),
        }


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        try:
            value = datetime.fromisoformat(str(raw))
        except ValueError:
            logger.warning("Ignoring unparseable lockout timestamp %r", raw)
            return None
    if value.tzinfo is None:
        # Naive values are stored as UTC.
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class AuthenticationService:
    accounts: AccountStore
    hasher: PasswordVerifier
    clock: Callable[[], datetime] = utc_now
    max_attempts: int = 5
    lockout: timedelta = field(default_factory=lambda: timedelta(minutes=15))

    def authenticate(self, identifier: Optional[str], password: Optional[str], by: str = "username") -> AuthenticatedAccount:
        if not identifier:
            raise ValidationError("A username or email address is required.")
        if not password:
            raise ValidationError("Password is required.")
        if not isinstance(identifier, str) or not isinstance(password, str):
            raise ValidationError("Username, email and password must be text.")
        if by not in ("username", "email"):
            raise ValidationError("Unsupported identifier type.")

        account = self._resolve(by, identifier)
        now = self.clock()

        locked_until = _parse_timestamp(account.get("locked_until"))
        if locked_until is not None and locked_until > now:
            logger.info("Login refused for locked account id=%s", account["id"])
            raise AccountLocked()

        if not account.get("activo"):
            logger.info("Login refused for disabled account id=%s", account["id"])
            raise AccountDisabled()

        try:
            valid = self.hasher.verify(password, account.get("password_hash") or "")
        except Exception as exc:
            logger.error("Password verification failed for account id=%s", account["id"], exc_info=True)
            raise InternalError() from exc

        if not valid:
            raise self._register_failure(account, now)

        self._write(account["id"], {
            "failed_attempts": 0,
            "locked_until": None,
            "last_access": now.isoformat(),
            "updated_at": now.isoformat(),
        })
        logger.info("Successful login for account id=%s", account["id"])
        return self._sanitize(account)

    def _resolve(self, by: str, identifier: str) -> Dict[str, Any]:
        try:
            matches = self.accounts.find_by(by, identifier)
        except Exception:
            logger.warning("Account lookup by %s failed", by, exc_info=True)
            raise InvalidCredentials() from None
        if len(matches) != 1:
            logger.info("Login attempt for unknown %s", by)
            raise InvalidCredentials()
        return matches[0]

    def _register_failure(self, account: Dict[str, Any], now: datetime) -> InvalidCredentials:
        attempts = int(account.get("failed_attempts") or 0) + 1
        changes: Dict[str, Any] = {
            "failed_attempts": attempts,
            "updated_at": now.isoformat(),
        }
        locking = attempts >= self.max_attempts
        if locking:
            changes["locked_until"] = (now + self.lockout).isoformat()
        self._write(account["id"], changes)

        if locking:
            logger.warning("Account id=%s locked after %d failed attempts", account["id"], attempts)
        else:
            logger.info("Failed login for account id=%s (%d attempts)", account["id"], attempts)
        return InvalidCredentials()

    def _write(self, account_id: int, changes: Dict[str, Any]) -> None:
        try:
            self.accounts.update(account_id, changes)
        except Exception as exc:
            logger.error("Unable to update login state for account id=%s", account_id, exc_info=True)
            raise InternalError() from exc

    @staticmethod
    def _sanitize(account: Dict[str, Any]) -> AuthenticatedAccount:
        rol = account.get("rol") or {}
        return AuthenticatedAccount(
            id=account["id"],
            username=account["username"],
            email=account["email"],
            nombre_completo=account.get("nombre_completo"),
            verificado=bool(account.get("verificado")),
            rol={
                "id": rol.get("id"),
                "nombre": rol.get("nombre"),
                "permisos": rol.get("permisos") or {},
            },
            cliente_id=account.get("cliente_id"),
            empleado_id=account.get("empleado_id"),
        )
