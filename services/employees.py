"""Employee (team) records."""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Any, Dict, List, Optional

from services.db import get_app_db, insert_row, now_iso, pick, update_row

EMPLOYEE_FIELDS = (
    "nombre",
    "email",
    "telefono",
    "rol",
    "especialidad",
    "avatar_url",
    "direccion",
    "fecha_ingreso",
    "salario",
    "numero_empleado",
    "activo",
    "notas",
)


def _serialize(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["activo"] = bool(data["activo"])
    return data


def list_employees() -> List[Dict[str, Any]]:
    conn = get_app_db()
    rows = conn.execute("SELECT * FROM empleados ORDER BY nombre COLLATE NOCASE ASC").fetchall()
    return [_serialize(row) for row in rows]


def get_employee(employee_id: int) -> Optional[Dict[str, Any]]:
    """Employee record with the cases it is assigned to under ``casos``."""
    conn = get_app_db()
    row = conn.execute("SELECT * FROM empleados WHERE id = ?", (employee_id,)).fetchone()
    if row is None:
        return None
    employee = _serialize(row)
    assignments = conn.execute(
        """
        SELECT ec.id, ec.rol_en_caso, ec.fecha_asignacion,
               c.id AS caso_id, c.title, c.status, c.client_name
        FROM empleados_casos ec
        JOIN casos c ON c.id = ec.caso_id
        WHERE ec.empleado_id = ?
        ORDER BY ec.fecha_asignacion DESC
        """,
        (employee_id,),
    ).fetchall()
    employee["casos"] = [
        {
            "id": a["id"],
            "rol_en_caso": a["rol_en_caso"],
            "fecha_asignacion": a["fecha_asignacion"],
            "caso": {
                "id": a["caso_id"],
                "title": a["title"],
                "status": a["status"],
                "client_name": a["client_name"],
            },
        }
        for a in assignments
    ]
    return employee


def create_employee(data: Dict[str, Any]) -> int:
    if not data.get("nombre"):
        raise ValueError("Employee name is required")
    now = now_iso()
    values = {
        "nombre": data["nombre"],
        "email": data.get("email") or None,
        "telefono": data.get("telefono") or None,
        "rol": data.get("rol") or "Abogado",
        "especialidad": data.get("especialidad") or None,
        "avatar_url": data.get("avatar_url") or None,
        "direccion": data.get("direccion") or None,
        "fecha_ingreso": data.get("fecha_ingreso") or date.today().isoformat(),
        "salario": data.get("salario") or None,
        "numero_empleado": data.get("numero_empleado") or None,
        "activo": 1 if data.get("activo", True) else 0,
        "notas": data.get("notas") or None,
        "created_at": now,
        "updated_at": now,
    }
    conn = get_app_db()
    employee_id = insert_row(conn, "empleados", values)
    conn.commit()
    return employee_id


def update_employee(employee_id: int, data: Dict[str, Any]) -> bool:
    changes = pick(data, EMPLOYEE_FIELDS)
    if "activo" in changes:
        changes["activo"] = 1 if changes["activo"] else 0
    changes["updated_at"] = now_iso()
    conn = get_app_db()
    updated = update_row(conn, "empleados", employee_id, changes)
    conn.commit()
    return updated > 0


def delete_employee(employee_id: int) -> bool:
    conn = get_app_db()
    cur = conn.execute("DELETE FROM empleados WHERE id = ?", (employee_id,))
    conn.commit()
    return cur.rowcount > 0
