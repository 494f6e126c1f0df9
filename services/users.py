"""Account and role helpers for Case Desk."""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Callable, Dict, List, Optional

from services.db import get_app_db, insert_row, now_iso, pick, update_row
from services.security import password_hasher


class UserExistsError(ValueError):
    """Raised when a username is already taken by another account."""


class EmailInUseError(UserExistsError):
    """Raised when an email is already registered to another account."""


ACCOUNT_FIELDS = (
    "username",
    "email",
    "nombre_completo",
    "telefono",
    "avatar_url",
    "rol_id",
    "activo",
    "verificado",
    "cliente_id",
    "empleado_id",
)

_ACCOUNT_SELECT = """
    SELECT u.*,
           r.nombre AS rol_nombre, r.descripcion AS rol_descripcion, r.permisos AS rol_permisos,
           c.nombre AS cliente_nombre, c.email AS cliente_email, c.telefono AS cliente_telefono,
           e.nombre AS empleado_nombre, e.email AS empleado_email, e.rol AS empleado_rol,
           e.especialidad AS empleado_especialidad
    FROM usuarios u
    JOIN roles r ON r.id = u.rol_id
    LEFT JOIN clientes c ON c.id = u.cliente_id
    LEFT JOIN empleados e ON e.id = u.empleado_id
"""


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def parse_permissions(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def serialize_role(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "nombre": row["nombre"],
        "descripcion": row["descripcion"],
        "permisos": parse_permissions(row["permisos"]),
        "activo": bool(row["activo"]),
    }


def _account_with_role(row: sqlite3.Row) -> Dict[str, Any]:
    """Full account record, hash included, for the authentication service only."""
    account = {key: row[key] for key in row.keys() if not key.startswith(("rol_", "cliente_", "empleado_"))}
    account["rol_id"] = row["rol_id"]
    account["cliente_id"] = row["cliente_id"]
    account["empleado_id"] = row["empleado_id"]
    account["rol"] = {
        "id": row["rol_id"],
        "nombre": row["rol_nombre"],
        "permisos": parse_permissions(row["rol_permisos"]),
    }
    return account


def serialize_user(row: sqlite3.Row) -> Dict[str, Any]:
    """Public view of an account; never carries the hash or lockout counters."""
    return {
        "id": row["id"],
        "username": row["username"],
        "email": row["email"],
        "nombre_completo": row["nombre_completo"],
        "telefono": row["telefono"],
        "avatar_url": row["avatar_url"],
        "ultimo_acceso": row["last_access"],
        "activo": bool(row["activo"]),
        "verificado": bool(row["verificado"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "rol": {
            "id": row["rol_id"],
            "nombre": row["rol_nombre"],
            "descripcion": row["rol_descripcion"],
            "permisos": parse_permissions(row["rol_permisos"]),
        },
        "cliente": (
            {
                "id": row["cliente_id"],
                "nombre": row["cliente_nombre"],
                "email": row["cliente_email"],
                "telefono": row["cliente_telefono"],
            }
            if row["cliente_id"] is not None
            else None
        ),
        "empleado": (
            {
                "id": row["empleado_id"],
                "nombre": row["empleado_nombre"],
                "email": row["empleado_email"],
                "rol": row["empleado_rol"],
                "especialidad": row["empleado_especialidad"],
            }
            if row["empleado_id"] is not None
            else None
        ),
    }


class AccountRepository:
    """Row-level access to the ``usuarios`` table used by the authentication service."""

    LOOKUP_FIELDS = {"username", "email"}

    def __init__(self, connect: Callable[[], sqlite3.Connection] = get_app_db) -> None:
        self._connect = connect

    def find_by(self, field: str, value: str) -> List[Dict[str, Any]]:
        if field not in self.LOOKUP_FIELDS:
            raise ValueError(f"Unsupported lookup field: {field!r}")
        if field == "email":
            value = normalize_email(value)
        rows = self._connect().execute(
            f"{_ACCOUNT_SELECT} WHERE u.{field} = ?",
            (value,),
        ).fetchall()
        return [_account_with_role(row) for row in rows]

    def update(self, account_id: int, changes: Dict[str, Any]) -> None:
        conn = self._connect()
        update_row(conn, "usuarios", account_id, changes)
        conn.commit()


# ----------------------------------------------------------------------
# Roles
# ----------------------------------------------------------------------
def list_roles() -> List[Dict[str, Any]]:
    conn = get_app_db()
    rows = conn.execute(
        "SELECT * FROM roles WHERE activo = 1 ORDER BY id ASC"
    ).fetchall()
    return [serialize_role(row) for row in rows]


def get_role(role_id: int) -> Optional[sqlite3.Row]:
    conn = get_app_db()
    return conn.execute("SELECT * FROM roles WHERE id = ?", (role_id,)).fetchone()


# ----------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------
def get_user_row(user_id: int) -> Optional[sqlite3.Row]:
    conn = get_app_db()
    return conn.execute(f"{_ACCOUNT_SELECT} WHERE u.id = ?", (user_id,)).fetchone()


def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    row = get_user_row(user_id)
    return serialize_user(row) if row else None


def list_users() -> List[Dict[str, Any]]:
    conn = get_app_db()
    rows = conn.execute(f"{_ACCOUNT_SELECT} ORDER BY u.created_at DESC, u.id DESC").fetchall()
    return [serialize_user(row) for row in rows]


def find_user_id_by_email(email: str) -> Optional[int]:
    conn = get_app_db()
    row = conn.execute(
        "SELECT id FROM usuarios WHERE email = ?",
        (normalize_email(email),),
    ).fetchone()
    return int(row["id"]) if row else None


def _ensure_unique(conn: sqlite3.Connection, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> None:
    if username is not None:
        row = conn.execute(
            "SELECT id FROM usuarios WHERE username = ? AND id IS NOT ?",
            (username, exclude_id),
        ).fetchone()
        if row:
            raise UserExistsError("Username is already in use")
    if email is not None:
        row = conn.execute(
            "SELECT id FROM usuarios WHERE email = ? AND id IS NOT ?",
            (email, exclude_id),
        ).fetchone()
        if row:
            raise EmailInUseError("Email is already in use")


def create_user(data: Dict[str, Any], hasher=password_hasher) -> int:
    username = (data.get("username") or "").strip()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""
    if not username:
        raise ValueError("Username is required")
    if not email:
        raise ValueError("Email is required")
    if not password:
        raise ValueError("Password is required")
    if not data.get("rol_id"):
        raise ValueError("Role is required")
    if get_role(data["rol_id"]) is None:
        raise ValueError("Unknown role")

    conn = get_app_db()
    _ensure_unique(conn, username, email)
    password_hash = hasher.hash(password)

    now = now_iso()
    values = {
        "username": username,
        "email": email,
        "password_hash": password_hash,
        "rol_id": data["rol_id"],
        "nombre_completo": data.get("nombre_completo") or None,
        "telefono": data.get("telefono") or None,
        "avatar_url": data.get("avatar_url") or None,
        "activo": 1 if data.get("activo", True) else 0,
        "verificado": 0,
        "cliente_id": data.get("cliente_id") or None,
        "empleado_id": data.get("empleado_id") or None,
        "created_at": now,
        "updated_at": now,
    }
    try:
        user_id = insert_row(conn, "usuarios", values)
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        raise UserExistsError(f"User {username!r} could not be created") from exc
    return user_id


def update_user(user_id: int, data: Dict[str, Any], hasher=password_hasher) -> bool:
    """Apply the supplied fields; returns False when the account does not exist."""
    changes = pick(data, ACCOUNT_FIELDS)
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
    for flag in ("activo", "verificado"):
        if flag in changes:
            changes[flag] = 1 if changes[flag] else 0
    if "rol_id" in changes and get_role(changes["rol_id"]) is None:
        raise ValueError("Unknown role")

    conn = get_app_db()
    _ensure_unique(conn, changes.get("username"), changes.get("email"), exclude_id=user_id)
    if data.get("password"):
        changes["password_hash"] = hasher.hash(data["password"])
    changes["updated_at"] = now_iso()

    try:
        updated = update_row(conn, "usuarios", user_id, changes)
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        raise UserExistsError("Username or email is already in use") from exc
    return updated > 0


def link_client(user_id: int, client_id: int) -> None:
    conn = get_app_db()
    update_row(conn, "usuarios", user_id, {"cliente_id": client_id, "updated_at": now_iso()})
    conn.commit()


def delete_user(user_id: int) -> bool:
    conn = get_app_db()
    cur = conn.execute("DELETE FROM usuarios WHERE id = ?", (user_id,))
    conn.commit()
    return cur.rowcount > 0
