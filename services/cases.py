"""Case records and their team assignments."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.db import get_app_db, insert_row, now_iso, pick, row_to_dict, update_row


class AssignmentExistsError(ValueError):
    """Raised when an employee is already assigned to the case."""


CASE_FIELDS = (
    "title",
    "description",
    "client_name",
    "contact_person",
    "client_email",
    "client_phone",
    "practice_area",
    "case_type",
    "opponent",
    "opponent_lawyer",
    "file_number",
    "court",
    "jurisdiction",
    "judge",
    "status",
    "next_hearing",
    "amount",
    "fees",
    "responsible_lawyer",
    "assistants",
    "strategy",
    "risks",
    "observaciones",
    "start_date",
    "end_date",
)


def _normalize_hearing(raw: Any) -> Optional[str]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw)).isoformat()
    except ValueError:
        raise ValueError("next_hearing must be an ISO-8601 date or datetime") from None


def list_cases() -> List[Dict[str, Any]]:
    conn = get_app_db()
    rows = conn.execute("SELECT * FROM casos ORDER BY created_at DESC, id DESC").fetchall()
    return [dict(row) for row in rows]


def get_case(case_id: int) -> Optional[Dict[str, Any]]:
    conn = get_app_db()
    return row_to_dict(conn.execute("SELECT * FROM casos WHERE id = ?", (case_id,)).fetchone())


def create_case(data: Dict[str, Any]) -> int:
    if not data.get("title") or not data.get("client_name"):
        raise ValueError("Title and client name are required")

    now = now_iso()
    values = {key: data.get(key) or None for key in CASE_FIELDS}
    values.update(
        {
            "title": data["title"],
            "client_name": data["client_name"],
            "status": data.get("status") or "inicio",
            "next_hearing": _normalize_hearing(data.get("next_hearing")),
            "start_date": now,
            "created_at": now,
            "updated_at": now,
        }
    )
    conn = get_app_db()
    case_id = insert_row(conn, "casos", values)
    conn.commit()
    return case_id


def update_case(case_id: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    changes = pick(data, CASE_FIELDS)
    if "next_hearing" in changes:
        changes["next_hearing"] = _normalize_hearing(changes["next_hearing"])
    changes["updated_at"] = now_iso()
    conn = get_app_db()
    if not update_row(conn, "casos", case_id, changes):
        return None
    conn.commit()
    return get_case(case_id)


def delete_case(case_id: int) -> bool:
    conn = get_app_db()
    cur = conn.execute("DELETE FROM casos WHERE id = ?", (case_id,))
    conn.commit()
    return cur.rowcount > 0


# ----------------------------------------------------------------------
# Assignments
# ----------------------------------------------------------------------
def list_assignments(case_id: int) -> List[Dict[str, Any]]:
    conn = get_app_db()
    rows = conn.execute(
        """
        SELECT ec.id, ec.rol_en_caso, ec.fecha_asignacion, ec.notas,
               e.id AS empleado_id, e.nombre, e.email, e.telefono, e.rol,
               e.especialidad, e.avatar_url, e.activo
        FROM empleados_casos ec
        JOIN empleados e ON e.id = ec.empleado_id
        WHERE ec.caso_id = ?
        ORDER BY ec.fecha_asignacion ASC
        """,
        (case_id,),
    ).fetchall()
    return [
        {
            "id": row["id"],
            "rol_en_caso": row["rol_en_caso"],
            "fecha_asignacion": row["fecha_asignacion"],
            "notas": row["notas"],
            "empleado": {
                "id": row["empleado_id"],
                "nombre": row["nombre"],
                "email": row["email"],
                "telefono": row["telefono"],
                "rol": row["rol"],
                "especialidad": row["especialidad"],
                "avatar_url": row["avatar_url"],
                "activo": bool(row["activo"]),
            },
        }
        for row in rows
    ]


def assign_employee(case_id: int, data: Dict[str, Any]) -> int:
    employee_id = data.get("empleado_id")
    if not employee_id:
        raise ValueError("Employee id is required")
    now = now_iso()
    conn = get_app_db()
    try:
        assignment_id = insert_row(
            conn,
            "empleados_casos",
            {
                "empleado_id": int(employee_id),
                "caso_id": case_id,
                "rol_en_caso": data.get("rol_en_caso") or "Asignado",
                "notas": data.get("notas") or None,
                "fecha_asignacion": now,
                "created_at": now,
            },
        )
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        if "UNIQUE" in str(exc):
            raise AssignmentExistsError("Employee is already assigned to this case") from exc
        raise ValueError("Unknown case or employee") from exc
    return assignment_id


def unassign_employee(case_id: int, employee_id: int) -> bool:
    conn = get_app_db()
    cur = conn.execute(
        "DELETE FROM empleados_casos WHERE caso_id = ? AND empleado_id = ?",
        (case_id, employee_id),
    )
    conn.commit()
    return cur.rowcount > 0
