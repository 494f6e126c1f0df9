"""Client-side session ownership and role-based navigation."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from cryptography.fernet import Fernet

from services import routing
from services.api_client import CaseDeskAPIError, CaseDeskClient

logger = logging.getLogger("casedesk.session")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class Role:
    id: int
    nombre: str
    permisos: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Session:
    id: int
    username: str
    email: str
    rol: Role
    nombre_completo: Optional[str] = None
    verificado: bool = False
    cliente_id: Optional[int] = None
    empleado_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        rol = data["rol"]
        if not isinstance(rol, dict):
            raise TypeError("rol must be an object")
        return cls(
            id=int(data["id"]),
            username=str(data["username"]),
            email=str(data["email"]),
            rol=Role(id=int(rol["id"]), nombre=str(rol["nombre"]), permisos=dict(rol.get("permisos") or {})),
            nombre_completo=data.get("nombre_completo"),
            verificado=bool(data.get("verificado")),
            cliente_id=data.get("cliente_id"),
            empleado_id=data.get("empleado_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "nombre_completo": self.nombre_completo,
            "verificado": self.verificado,
            "cliente_id": self.cliente_id,
            "empleado_id": self.empleado_id,
            "rol": {"id": self.rol.id, "nombre": self.rol.nombre, "permisos": dict(self.rol.permisos)},
        }


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class FileSessionStore:
    """One file per key under ``directory``, optionally Fernet-encrypted."""

    def __init__(self, directory: Path, cipher: Optional[Fernet] = None) -> None:
        self.directory = Path(directory)
        self.cipher = cipher

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.enc"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        if self.cipher is not None:
            raw = self.cipher.decrypt(raw)
        return raw.decode("utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        data = value.encode("utf-8")
        if self.cipher is not None:
            data = self.cipher.encrypt(data)
        path = self._path(key)
        path.write_bytes(data)
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class SessionController:
    """Owns the authenticated identity and keeps navigation consistent with its role.

    ``navigate`` is called with the redirect target whenever reconciliation
    decides the requested path is not allowed. No redirect happens before
    :meth:`restore_session` has run.
    """

    STORAGE_KEY = "usuario"

    def __init__(
        self,
        client: CaseDeskClient,
        store: KeyValueStore,
        navigate: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._navigate = navigate or (lambda _path: None)
        self._session: Optional[Session] = None
        self.error: Optional[str] = None
        self.loading = True
        self.session_checked = False
        self.path: Optional[str] = None

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------
    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def role_name(self) -> Optional[str]:
        return self._session.rol.nombre if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def is_admin(self) -> bool:
        return self.role_name == routing.ROLE_ADMIN

    @property
    def is_empleado(self) -> bool:
        return self.role_name == routing.ROLE_EMPLOYEE

    @property
    def is_cliente(self) -> bool:
        return self.role_name == routing.ROLE_CLIENT

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def restore_session(self) -> Optional[Session]:
        try:
            saved = self._store.get(self.STORAGE_KEY)
            if saved:
                self._session = Session.from_dict(json.loads(saved))
        except Exception:
            logger.warning("Discarding unreadable saved session", exc_info=True)
            self._session = None
            self._clear_store()
        finally:
            self.loading = False
            self.session_checked = True
        self._reconcile()
        return self._session

    def login(self, identifier: str, password: str) -> bool:
        self.loading = True
        self.error = None
        try:
            data = self._client.login(identifier, password)
            session = Session.from_dict(data)
        except CaseDeskAPIError as exc:
            self.error = exc.message
            return False
        except (KeyError, TypeError, ValueError):
            logger.error("Login response had an unexpected shape", exc_info=True)
            self.error = "Unexpected response from server."
            return False
        finally:
            self.loading = False

        self._session = session
        try:
            self._store.set(self.STORAGE_KEY, json.dumps(session.to_dict()))
        except Exception:
            logger.warning("Unable to persist session; it will not survive a restart", exc_info=True)
        self._reconcile()
        return True

    def logout(self) -> None:
        self._session = None
        self._clear_store()
        self.path = routing.LOGIN_PATH
        self._navigate(routing.LOGIN_PATH)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def navigate(self, path: str) -> str:
        """Request ``path``; returns the path actually shown after reconciliation."""
        self.path = routing.normalize_path(path)
        self._reconcile()
        return self.path

    def _reconcile(self) -> None:
        if not self.session_checked or self.path is None:
            return
        target = routing.reconcile(self.role_name, self.path)
        if target is not None and target != self.path:
            logger.debug("Redirecting %s -> %s (role=%s)", self.path, target, self.role_name)
            self.path = target
            self._navigate(target)

    def _clear_store(self) -> None:
        try:
            self._store.remove(self.STORAGE_KEY)
        except Exception:
            logger.warning("Unable to clear saved session", exc_info=True)


def default_controller(navigate: Optional[Callable[[str], None]] = None) -> SessionController:
    """Controller wired to the configured API and the encrypted on-disk store."""
    import casedesk_config
    from services.settings import settings_manager

    client = CaseDeskClient(casedesk_config.API_BASE_URL, timeout=casedesk_config.REQUEST_TIMEOUT_SECONDS)
    store = FileSessionStore(casedesk_config.SESSION_DIR, cipher=settings_manager.fernet())
    return SessionController(client, store, navigate=navigate)
