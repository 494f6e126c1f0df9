"""Client records and the login account created alongside each one."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

import casedesk_config
from services.db import get_app_db, insert_row, now_iso, pick, row_to_dict, update_row
from services.security import password_hasher
from services.users import UserExistsError, create_user, find_user_id_by_email, link_client, normalize_email

logger = logging.getLogger("casedesk.clients")

CLIENT_FIELDS = (
    "nombre",
    "tipo_cliente",
    "cedula",
    "email",
    "telefono",
    "direccion",
    "ciudad",
    "estado",
    "codigo_postal",
    "pais",
    "persona_contacto",
    "cargo_contacto",
    "notas",
    "activo",
)


def _serialize(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["activo"] = bool(data["activo"])
    return data


def list_clients(email: Optional[str] = None) -> List[Dict[str, Any]]:
    conn = get_app_db()
    if email:
        rows = conn.execute(
            "SELECT * FROM clientes WHERE email = ? ORDER BY created_at DESC, id DESC",
            (normalize_email(email),),
        ).fetchall()
    else:
        rows = conn.execute("SELECT * FROM clientes ORDER BY created_at DESC, id DESC").fetchall()
    return [_serialize(row) for row in rows]


def get_client(client_id: int) -> Optional[Dict[str, Any]]:
    conn = get_app_db()
    row = conn.execute("SELECT * FROM clientes WHERE id = ?", (client_id,)).fetchone()
    return _serialize(row) if row else None


def create_client(data: Dict[str, Any]) -> int:
    for required, label in (("nombre", "Client name"), ("email", "Email"), ("cedula", "ID number")):
        if not data.get(required):
            raise ValueError(f"{label} is required")

    now = now_iso()
    values = {
        "nombre": data["nombre"],
        "tipo_cliente": data.get("tipo_cliente") or "empresa",
        "cedula": data["cedula"],
        "email": normalize_email(data["email"]),
        "telefono": data.get("telefono") or None,
        "direccion": data.get("direccion") or None,
        "ciudad": data.get("ciudad") or None,
        "estado": data.get("estado") or None,
        "codigo_postal": data.get("codigo_postal") or None,
        "pais": data.get("pais") or "Ecuador",
        "persona_contacto": data.get("persona_contacto") or None,
        "cargo_contacto": data.get("cargo_contacto") or None,
        "notas": data.get("notas") or None,
        "activo": 1 if data.get("activo", True) else 0,
        "created_at": now,
        "updated_at": now,
    }
    conn = get_app_db()
    client_id = insert_row(conn, "clientes", values)
    conn.commit()
    return client_id


def provision_portal_account(client: Dict[str, Any], hasher=password_hasher) -> Dict[str, Any]:
    """Create or link the portal login for a freshly created client.

    The username is the client's email and the initial password is the
    client's ID number (``cedula``). An existing account with that email is
    linked instead. Failures are reported in the returned summary and never
    undo the client record.
    """
    existing_id = find_user_id_by_email(client["email"])
    if existing_id is not None:
        link_client(existing_id, client["id"])
        return {
            "creado": False,
            "mensaje": "An account with this email already existed and was linked to the client.",
        }

    try:
        create_user(
            {
                "username": client["email"],
                "email": client["email"],
                "password": client["cedula"],
                "rol_id": casedesk_config.CLIENT_ROLE_ID,
                "nombre_completo": client["nombre"],
                "telefono": client.get("telefono"),
                "activo": True,
                "cliente_id": client["id"],
            },
            hasher=hasher,
        )
    except (UserExistsError, ValueError, RuntimeError, sqlite3.Error):
        logger.error("Unable to create portal account for client id=%s", client["id"], exc_info=True)
        return {"creado": False, "mensaje": "The client was created but the account could not be."}

    return {
        "creado": True,
        "username": client["email"],
        "mensaje": "Account created. Initial password: the client's ID number.",
    }


def update_client(client_id: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    changes = pick(data, CLIENT_FIELDS)
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
    if "activo" in changes:
        changes["activo"] = 1 if changes["activo"] else 0
    changes["updated_at"] = now_iso()
    conn = get_app_db()
    if not update_row(conn, "clientes", client_id, changes):
        return None
    conn.commit()
    return get_client(client_id)


def delete_client(client_id: int) -> bool:
    conn = get_app_db()
    cur = conn.execute("DELETE FROM clientes WHERE id = ?", (client_id,))
    conn.commit()
    return cur.rowcount > 0


def client_cases(client: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Cases that name the client by email or by name, newest first."""
    conn = get_app_db()
    rows = conn.execute(
        """
        SELECT * FROM casos
        WHERE client_email = ? OR client_name = ?
        ORDER BY created_at DESC, id DESC
        """,
        (client.get("email"), client.get("nombre")),
    ).fetchall()
    return [row_to_dict(row) for row in rows]
