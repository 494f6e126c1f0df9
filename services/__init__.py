"""Service layer helpers for Case Desk."""

from . import security, db, settings, users, auth, routing, api_client, session, clients, employees, cases, documents  # noqa: F401

__all__ = [
    "security",
    "db",
    "settings",
    "users",
    "auth",
    "routing",
    "api_client",
    "session",
    "clients",
    "employees",
    "cases",
    "documents",
]
