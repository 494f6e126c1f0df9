"""Database utilities for Case Desk."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from flask import current_app, g, has_app_context

import casedesk_config


# Global schema version for the application database.
_SCHEMA_VERSION = 2

_SEED_ROLES = (
    (1, "administrador", "Acceso completo al sistema", '{"all": true}'),
    (2, "empleado", "Gestion de casos, clientes y documentos", '{"casos": true, "clientes": true, "documentos": true}'),
    (3, "cliente", "Acceso al portal de cliente", '{"portal": true}'),
)


def _app_db_path() -> Path:
    """Return the path for the primary application database."""
    if has_app_context():
        configured = current_app.config.get("DATABASE")
        if configured:
            return Path(configured)
    return Path(casedesk_config.DATABASE_PATH)


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )

    row = conn.execute(
        "SELECT value FROM app_meta WHERE key = 'schema_version'"
    ).fetchone()
    current_version = int(row["value"]) if row else 0

    if current_version < 1:
        _migrate_to_v1(conn)
        current_version = 1

    if current_version < 2:
        _migrate_to_v2(conn)
        current_version = 2

    conn.execute(
        "INSERT INTO app_meta(key, value) VALUES('schema_version', ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (str(_SCHEMA_VERSION),),
    )
    conn.commit()


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS roles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nombre TEXT NOT NULL UNIQUE,
            descripcion TEXT,
            permisos TEXT,
            activo INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.executemany(
        "INSERT INTO roles(id, nombre, descripcion, permisos) VALUES(?, ?, ?, ?) "
        "ON CONFLICT(id) DO NOTHING",
        _SEED_ROLES,
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS clientes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nombre TEXT NOT NULL,
            tipo_cliente TEXT NOT NULL DEFAULT 'empresa',
            cedula TEXT,
            email TEXT,
            telefono TEXT,
            direccion TEXT,
            ciudad TEXT,
            estado TEXT,
            codigo_postal TEXT,
            pais TEXT,
            persona_contacto TEXT,
            cargo_contacto TEXT,
            notas TEXT,
            activo INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_clientes_email ON clientes(email)")

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS empleados (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nombre TEXT NOT NULL,
            email TEXT,
            telefono TEXT,
            rol TEXT NOT NULL DEFAULT 'Abogado',
            especialidad TEXT,
            avatar_url TEXT,
            direccion TEXT,
            fecha_ingreso TEXT,
            salario REAL,
            numero_empleado TEXT,
            activo INTEGER NOT NULL DEFAULT 1,
            notas TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS usuarios (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            nombre_completo TEXT,
            telefono TEXT,
            avatar_url TEXT,
            activo INTEGER NOT NULL DEFAULT 1,
            verificado INTEGER NOT NULL DEFAULT 0,
            failed_attempts INTEGER NOT NULL DEFAULT 0,
            locked_until TEXT,
            last_access TEXT,
            rol_id INTEGER NOT NULL,
            cliente_id INTEGER,
            empleado_id INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(rol_id) REFERENCES roles(id),
            FOREIGN KEY(cliente_id) REFERENCES clientes(id) ON DELETE SET NULL,
            FOREIGN KEY(empleado_id) REFERENCES empleados(id) ON DELETE SET NULL
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS casos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT,
            client_name TEXT NOT NULL,
            contact_person TEXT,
            client_email TEXT,
            client_phone TEXT,
            practice_area TEXT,
            case_type TEXT,
            opponent TEXT,
            opponent_lawyer TEXT,
            file_number TEXT,
            court TEXT,
            jurisdiction TEXT,
            judge TEXT,
            status TEXT,
            next_hearing TEXT,
            amount REAL,
            fees TEXT,
            responsible_lawyer TEXT,
            assistants TEXT,
            strategy TEXT,
            risks TEXT,
            observaciones TEXT,
            start_date TEXT,
            end_date TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    conn.execute(
        "INSERT INTO app_meta(key, value) VALUES('schema_version', '1') "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value"
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS empleados_casos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            empleado_id INTEGER NOT NULL,
            caso_id INTEGER NOT NULL,
            rol_en_caso TEXT NOT NULL DEFAULT 'Asignado',
            notas TEXT,
            fecha_asignacion TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE(empleado_id, caso_id),
            FOREIGN KEY(empleado_id) REFERENCES empleados(id) ON DELETE CASCADE,
            FOREIGN KEY(caso_id) REFERENCES casos(id) ON DELETE CASCADE
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_empleados_casos_caso ON empleados_casos(caso_id)"
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS documentos (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nombre TEXT NOT NULL,
            nombre_archivo TEXT NOT NULL,
            tipo_documento TEXT NOT NULL DEFAULT 'general',
            mime_type TEXT,
            tamano_bytes INTEGER,
            storage_path TEXT NOT NULL,
            descripcion TEXT,
            caso_id INTEGER,
            cliente_id INTEGER,
            subido_por INTEGER,
            es_confidencial INTEGER NOT NULL DEFAULT 0,
            fecha_documento TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(caso_id) REFERENCES casos(id) ON DELETE SET NULL,
            FOREIGN KEY(cliente_id) REFERENCES clientes(id) ON DELETE SET NULL,
            FOREIGN KEY(subido_por) REFERENCES usuarios(id) ON DELETE SET NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_documentos_caso ON documentos(caso_id)"
    )


def connect(path: Path) -> sqlite3.Connection:
    """Open a configured connection with the schema brought up to date."""
    _ensure_parent_dir(path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    _ensure_schema(conn)
    return conn


def get_app_db() -> sqlite3.Connection:
    """Return a connection to the application database bound to Flask's context."""
    if 'app_db' not in g:
        g.app_db = connect(_app_db_path())
    return g.app_db


def close_app_db(_: Optional[BaseException]) -> None:
    conn = g.pop('app_db', None)
    if conn is not None:
        conn.close()


def insert_row(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> int:
    """Insert ``values`` into ``table`` and return the new row id."""
    columns = list(values)
    cur = conn.execute(
        f"INSERT INTO {table}({', '.join(columns)}) VALUES({', '.join('?' for _ in columns)})",
        [values[c] for c in columns],
    )
    return int(cur.lastrowid)


def update_row(conn: sqlite3.Connection, table: str, row_id: int, values: Dict[str, Any]) -> int:
    """Apply ``values`` to the row with ``row_id``; returns the affected row count."""
    if not values:
        return 0
    assignments = ", ".join(f"{c} = ?" for c in values)
    cur = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        [*values.values(), row_id],
    )
    return cur.rowcount


def pick(source: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    """Keep only the ``allowed`` keys that are present in ``source``."""
    return {key: source[key] for key in allowed if key in source}


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    return dict(row) if row is not None else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()
