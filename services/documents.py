"""Document metadata and the on-disk object storage that holds the blobs."""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from services.db import get_app_db, insert_row, now_iso, pick, update_row

logger = logging.getLogger("casedesk.documents")

DOCUMENT_FIELDS = (
    "nombre",
    "tipo_documento",
    "descripcion",
    "caso_id",
    "cliente_id",
    "es_confidencial",
    "fecha_documento",
)


class StorageError(RuntimeError):
    """Raised when a blob cannot be written, read or removed."""


class DocumentStorage:
    """Blob store rooted at a directory; every key must resolve inside it."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def resolve(self, key: str) -> Path:
        root = self.root.resolve()
        target = (root / key).resolve()
        if root != target and root not in target.parents:
            raise StorageError(f"Path escapes storage root: {key!r}")
        return target

    def upload(self, key: str, file: FileStorage) -> str:
        target = self.resolve(key)
        if target.exists():
            raise StorageError(f"Object already exists: {key!r}")
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            file.save(target)
        except OSError as exc:
            raise StorageError(f"Unable to store {key!r}") from exc
        return key

    def remove(self, key: str) -> None:
        try:
            self.resolve(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Unable to remove {key!r}") from exc


def storage_key(nombre: str, filename: str, caso_id: Optional[int] = None) -> str:
    """``<caso_id|general>/<millis>_<sanitized name>.<ext>``"""
    ext = secure_filename(filename).rsplit(".", 1)[-1].lower() if "." in filename else "bin"
    sanitized = re.sub(r"[^a-z0-9]", "_", nombre.lower())
    return f"{caso_id or 'general'}/{int(time.time() * 1000)}_{sanitized}.{ext}"


def _serialize(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["es_confidencial"] = bool(data["es_confidencial"])
    return data


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected a numeric id, got {value!r}") from None


def list_documents(caso_id: Optional[str] = None, cliente_id: Optional[str] = None) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if caso_id:
        clauses.append("d.caso_id = ?")
        params.append(_optional_int(caso_id))
    if cliente_id:
        clauses.append("d.cliente_id = ?")
        params.append(_optional_int(cliente_id))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = get_app_db()
    rows = conn.execute(
        f"""
        SELECT d.*, c.title AS caso_title, cl.nombre AS cliente_nombre,
               u.username AS subido_por_username, u.nombre_completo AS subido_por_nombre
        FROM documentos d
        LEFT JOIN casos c ON c.id = d.caso_id
        LEFT JOIN clientes cl ON cl.id = d.cliente_id
        LEFT JOIN usuarios u ON u.id = d.subido_por
        {where}
        ORDER BY d.created_at DESC, d.id DESC
        """,
        params,
    ).fetchall()

    documents = []
    for row in rows:
        doc = _serialize(row)
        for joined in ("caso_title", "cliente_nombre", "subido_por_username", "subido_por_nombre"):
            doc.pop(joined)
        doc["caso"] = {"id": row["caso_id"], "title": row["caso_title"]} if row["caso_id"] else None
        doc["cliente"] = {"id": row["cliente_id"], "nombre": row["cliente_nombre"]} if row["cliente_id"] else None
        doc["subido_por"] = (
            {
                "id": row["subido_por"],
                "username": row["subido_por_username"],
                "nombre_completo": row["subido_por_nombre"],
            }
            if row["subido_por"]
            else None
        )
        documents.append(doc)
    return documents


def get_document(document_id: int) -> Optional[Dict[str, Any]]:
    conn = get_app_db()
    row = conn.execute("SELECT * FROM documentos WHERE id = ?", (document_id,)).fetchone()
    return _serialize(row) if row else None


def create_document(storage: DocumentStorage, file: Optional[FileStorage], form: Dict[str, Any]) -> Dict[str, Any]:
    """Store the blob, then its metadata; the blob is removed if the metadata insert fails."""
    if file is None or not file.filename:
        raise ValueError("No file was provided")
    nombre = (form.get("nombre") or "").strip()
    if not nombre:
        raise ValueError("Document name is required")

    caso_id = _optional_int(form.get("caso_id"))
    key = storage.upload(storage_key(nombre, file.filename, caso_id), file)
    size = storage.resolve(key).stat().st_size

    now = now_iso()
    values = {
        "nombre": nombre,
        "nombre_archivo": file.filename,
        "tipo_documento": form.get("tipo_documento") or "general",
        "mime_type": file.mimetype or None,
        "tamano_bytes": size,
        "storage_path": key,
        "descripcion": form.get("descripcion") or None,
        "caso_id": caso_id,
        "cliente_id": _optional_int(form.get("cliente_id")),
        "subido_por": _optional_int(form.get("subido_por")),
        "es_confidencial": 1 if str(form.get("es_confidencial")).lower() == "true" else 0,
        "fecha_documento": form.get("fecha_documento") or None,
        "created_at": now,
        "updated_at": now,
    }
    conn = get_app_db()
    try:
        document_id = insert_row(conn, "documentos", values)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Document metadata insert failed; removing blob %s", key, exc_info=True)
        storage.remove(key)
        raise
    return get_document(document_id)


def update_document(document_id: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    changes = pick(data, DOCUMENT_FIELDS)
    if "es_confidencial" in changes:
        changes["es_confidencial"] = 1 if changes["es_confidencial"] else 0
    changes["updated_at"] = now_iso()
    conn = get_app_db()
    if not update_row(conn, "documentos", document_id, changes):
        return None
    conn.commit()
    return get_document(document_id)


def delete_document(storage: DocumentStorage, document_id: int) -> bool:
    """Remove the blob and the metadata row; a blob failure is logged and the row still goes."""
    document = get_document(document_id)
    if document is None:
        return False
    try:
        storage.remove(document["storage_path"])
    except StorageError:
        logger.error("Unable to remove blob for document id=%s", document_id, exc_info=True)
    conn = get_app_db()
    conn.execute("DELETE FROM documentos WHERE id = ?", (document_id,))
    conn.commit()
    return True
