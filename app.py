from __future__ import annotations

import logging
import os
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, g, jsonify, request, send_file, url_for

from services import cases, clients, documents, employees, users
from services.auth import AuthError, AuthenticationService
from services.db import close_app_db, get_app_db
from services.documents import DocumentStorage, StorageError
from services.security import password_hasher

# ---- App config (pulled from casedesk_config.py) -----------------------
try:
    import casedesk_config as config
except Exception as e:
    raise RuntimeError("casedesk_config.py missing or invalid") from e


SECRET_KEY = getattr(config, "SECRET_KEY", "dev-local-secret-key")
ALLOWED_EXTENSIONS = set(getattr(config, "ALLOWED_EXTENSIONS", []))

logger = logging.getLogger("casedesk.app")


# ---- Flask setup --------------------------------------------------------
app = Flask(__name__)
app.secret_key = SECRET_KEY
app.config.setdefault("DATABASE", str(config.DATABASE_PATH))
app.config.setdefault("STORAGE_ROOT", str(config.STORAGE_ROOT))
app.config.setdefault("PASSWORD_HASHER", password_hasher)


# ---- Utilities ----------------------------------------------------------
def api_error(message: str, status: int = 400) -> Tuple[Response, int]:
    return jsonify({"error": message}), status


def json_body() -> Optional[Dict[str, Any]]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def get_storage() -> DocumentStorage:
    if 'storage' not in g:
        g.storage = DocumentStorage(Path(app.config["STORAGE_ROOT"]))
    return g.storage


def get_auth_service() -> AuthenticationService:
    return AuthenticationService(
        accounts=users.AccountRepository(get_app_db),
        hasher=app.config["PASSWORD_HASHER"],
        max_attempts=config.LOCKOUT_MAX_ATTEMPTS,
        lockout=timedelta(minutes=config.LOCKOUT_MINUTES),
    )


@app.teardown_appcontext
def close_application_db(exc: Optional[BaseException]) -> None:
    close_app_db(exc)


@app.errorhandler(sqlite3.Error)
def _database_error(exc: sqlite3.Error):
    logger.error("Database error on %s %s", request.method, request.path, exc_info=exc)
    return api_error("Internal server error.", 500)


def _bootstrap_app_state() -> None:
    with app.app_context():
        get_app_db()
    Path(app.config["STORAGE_ROOT"]).mkdir(parents=True, exist_ok=True)


# ---- Diagnostics --------------------------------------------------------
@app.get("/ping")
def ping():
    return "pong"


@app.get("/__routes")
def __routes():
    lines = [
        f"{r.rule}  [{','.join(sorted(m for m in r.methods if m not in {'HEAD','OPTIONS'}))}]"
        for r in app.url_map.iter_rules()
    ]
    return "<pre>" + "\n".join(sorted(lines)) + "</pre>"


# ---- Auth ---------------------------------------------------------------
@app.post("/api/auth/login")
def api_login():
    data = json_body() or {}
    username = data.get("username")
    email = data.get("email")
    if not username and not email:
        return api_error("A username or email address is required.", 400)
    if not data.get("password"):
        return api_error("Password is required.", 400)

    identifier, by = (username, "username") if username else (email, "email")
    try:
        account = get_auth_service().authenticate(identifier, data["password"], by=by)
    except AuthError as exc:
        return api_error(exc.message, exc.status)
    except Exception:
        logger.error("Unexpected error during login", exc_info=True)
        return api_error("Internal server error.", 500)

    return jsonify({"message": "Signed in successfully.", "data": account.to_dict()}), 200


# ---- Roles & Users ------------------------------------------------------
@app.get("/api/roles")
def api_roles():
    return jsonify({"data": users.list_roles()})


@app.get("/api/usuarios")
def api_users():
    return jsonify({"data": users.list_users()})


@app.post("/api/usuarios")
def api_create_user():
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        user_id = users.create_user(data, hasher=app.config["PASSWORD_HASHER"])
    except users.UserExistsError as exc:
        return api_error(str(exc), 409)
    except ValueError as exc:
        return api_error(str(exc), 400)
    return jsonify({"message": "User created.", "data": users.get_user(user_id)}), 201


@app.get("/api/usuarios/<int:user_id>")
def api_get_user(user_id: int):
    user = users.get_user(user_id)
    if user is None:
        return api_error("User not found.", 404)
    return jsonify({"data": user})


@app.put("/api/usuarios/<int:user_id>")
def api_update_user(user_id: int):
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        found = users.update_user(user_id, data, hasher=app.config["PASSWORD_HASHER"])
    except users.UserExistsError as exc:
        return api_error(str(exc), 409)
    except ValueError as exc:
        return api_error(str(exc), 400)
    if not found:
        return api_error("User not found.", 404)
    return jsonify({"message": "User updated.", "data": users.get_user(user_id)})


@app.delete("/api/usuarios/<int:user_id>")
def api_delete_user(user_id: int):
    if not users.delete_user(user_id):
        return api_error("User not found.", 404)
    return jsonify({"message": "User deleted."})


# ---- Clients ------------------------------------------------------------
@app.get("/api/clientes")
def api_clients():
    return jsonify({"data": clients.list_clients(request.args.get("email"))})


@app.post("/api/clientes")
def api_create_client():
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        client_id = clients.create_client(data)
    except ValueError as exc:
        return api_error(str(exc), 400)

    client = clients.get_client(client_id)
    account = clients.provision_portal_account(client, hasher=app.config["PASSWORD_HASHER"])
    return jsonify({"message": "Client created.", "data": client, "usuario": account}), 201


@app.get("/api/clientes/<int:client_id>")
def api_get_client(client_id: int):
    client = clients.get_client(client_id)
    if client is None:
        return api_error("Client not found.", 404)
    return jsonify({"data": client})


@app.get("/api/clientes/<int:client_id>/casos")
def api_client_cases(client_id: int):
    client = clients.get_client(client_id)
    if client is None:
        return api_error("Client not found.", 404)
    return jsonify({"data": clients.client_cases(client)})


@app.put("/api/clientes/<int:client_id>")
def api_update_client(client_id: int):
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    client = clients.update_client(client_id, data)
    if client is None:
        return api_error("Client not found.", 404)
    return jsonify({"message": "Client updated.", "data": client})


@app.delete("/api/clientes/<int:client_id>")
def api_delete_client(client_id: int):
    if not clients.delete_client(client_id):
        return api_error("Client not found.", 404)
    return jsonify({"message": "Client deleted."})


# ---- Employees ----------------------------------------------------------
@app.get("/api/empleados")
def api_employees():
    return jsonify({"data": employees.list_employees()})


@app.post("/api/empleados")
def api_create_employee():
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        employee_id = employees.create_employee(data)
    except ValueError as exc:
        return api_error(str(exc), 400)
    return jsonify({"message": "Employee created.", "data": employees.get_employee(employee_id)}), 201


@app.get("/api/empleados/<int:employee_id>")
def api_get_employee(employee_id: int):
    employee = employees.get_employee(employee_id)
    if employee is None:
        return api_error("Employee not found.", 404)
    return jsonify({"data": employee})


@app.put("/api/empleados/<int:employee_id>")
def api_update_employee(employee_id: int):
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    if not employees.update_employee(employee_id, data):
        return api_error("Employee not found.", 404)
    return jsonify({"message": "Employee updated.", "data": employees.get_employee(employee_id)})


@app.delete("/api/empleados/<int:employee_id>")
def api_delete_employee(employee_id: int):
    if not employees.delete_employee(employee_id):
        return api_error("Employee not found.", 404)
    return jsonify({"message": "Employee deleted."})


# ---- Cases --------------------------------------------------------------
@app.get("/api/casos")
def api_cases():
    return jsonify({"data": cases.list_cases()})


@app.post("/api/casos")
def api_create_case():
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        case_id = cases.create_case(data)
    except ValueError as exc:
        return api_error(str(exc), 400)
    return jsonify({"message": "Case created.", "data": cases.get_case(case_id)}), 201


@app.get("/api/casos/<int:case_id>")
def api_get_case(case_id: int):
    case = cases.get_case(case_id)
    if case is None:
        return api_error("Case not found.", 404)
    return jsonify({"data": case})


@app.put("/api/casos/<int:case_id>")
def api_update_case(case_id: int):
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        case = cases.update_case(case_id, data)
    except ValueError as exc:
        return api_error(str(exc), 400)
    if case is None:
        return api_error("Case not found.", 404)
    return jsonify({"message": "Case updated.", "data": case})


@app.delete("/api/casos/<int:case_id>")
def api_delete_case(case_id: int):
    if not cases.delete_case(case_id):
        return api_error("Case not found.", 404)
    return jsonify({"message": "Case deleted."})


@app.get("/api/casos/<int:case_id>/empleados")
def api_case_team(case_id: int):
    return jsonify({"data": cases.list_assignments(case_id)})


@app.post("/api/casos/<int:case_id>/empleados")
def api_assign_employee(case_id: int):
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    try:
        assignment_id = cases.assign_employee(case_id, data)
    except cases.AssignmentExistsError as exc:
        return api_error(str(exc), 409)
    except ValueError as exc:
        return api_error(str(exc), 400)
    return jsonify({"message": "Employee assigned.", "data": {"id": assignment_id}}), 201


@app.delete("/api/casos/<int:case_id>/empleados")
def api_unassign_employee(case_id: int):
    raw = (request.args.get("empleado_id") or "").strip()
    if not raw.isdigit():
        return api_error("empleado_id is required.", 400)
    if not cases.unassign_employee(case_id, int(raw)):
        return api_error("Assignment not found.", 404)
    return jsonify({"message": "Employee unassigned."})


# ---- Documents ----------------------------------------------------------
@app.get("/api/documentos")
def api_documents():
    try:
        data = documents.list_documents(request.args.get("caso_id"), request.args.get("cliente_id"))
    except ValueError as exc:
        return api_error(str(exc), 400)
    return jsonify({"data": data})


@app.post("/api/documentos")
def api_upload_document():
    file = request.files.get("file")
    if file is not None and file.filename and not allowed_file(file.filename):
        return api_error("Unsupported file type.", 400)
    try:
        document = documents.create_document(get_storage(), file, request.form)
    except ValueError as exc:
        return api_error(str(exc), 400)
    except StorageError:
        logger.error("Document upload failed", exc_info=True)
        return api_error("Unable to store the file.", 500)
    return jsonify({"message": "Document uploaded.", "data": document}), 201


@app.get("/api/documentos/<int:document_id>")
def api_get_document(document_id: int):
    document = documents.get_document(document_id)
    if document is None:
        return api_error("Document not found.", 404)
    document["download_url"] = url_for("api_download_document", document_id=document_id)
    return jsonify({"data": document})


@app.get("/api/documentos/<int:document_id>/descargar")
def api_download_document(document_id: int):
    document = documents.get_document(document_id)
    if document is None:
        return api_error("Document not found.", 404)
    try:
        path = get_storage().resolve(document["storage_path"])
    except StorageError:
        return api_error("Document not found.", 404)
    if not path.is_file():
        return api_error("Document not found.", 404)
    return send_file(
        path,
        mimetype=document["mime_type"] or None,
        as_attachment=True,
        download_name=document["nombre_archivo"],
    )


@app.put("/api/documentos/<int:document_id>")
def api_update_document(document_id: int):
    data = json_body()
    if data is None:
        return api_error("A JSON body is required.")
    document = documents.update_document(document_id, data)
    if document is None:
        return api_error("Document not found.", 404)
    return jsonify({"message": "Document updated.", "data": document})


@app.delete("/api/documentos/<int:document_id>")
def api_delete_document(document_id: int):
    if not documents.delete_document(get_storage(), document_id):
        return api_error("Document not found.", 404)
    return jsonify({"message": "Document deleted."})


# ---- Entrypoint ---------------------------------------------------------
if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("CASEDESK_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _bootstrap_app_state()
    print("\nURL map:")
    for r in app.url_map.iter_rules():
        methods = ",".join(sorted(m for m in r.methods if m not in {"HEAD", "OPTIONS"}))
        print(f"  {r.rule:38s} [{methods}]")
    print()
    app.run(host="0.0.0.0", port=5000, debug=os.environ.get("CASEDESK_DEBUG") == "1")
