"""Role-to-route table and the redirect decision made on every navigation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Area(str, Enum):
    PUBLIC = "public"
    CLIENT_PORTAL = "client-portal"
    SYSTEM = "system"


ROLE_ADMIN = "administrador"
ROLE_EMPLOYEE = "empleado"
ROLE_CLIENT = "cliente"
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_EMPLOYEE})

LOGIN_PATH = "/login"
PORTAL_ROOT = "/portal"
SYSTEM_ROOT = "/"


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    area: Area

    def matches(self, path: str) -> bool:
        # Whole-segment match: "/portal" covers "/portal/3" but not "/portalx".
        return path == self.prefix or path.startswith(self.prefix.rstrip("/") + "/")


ROUTE_TABLE: Tuple[RouteRule, ...] = (
    RouteRule(LOGIN_PATH, Area.PUBLIC),
    RouteRule("/register", Area.PUBLIC),
    RouteRule("/forgot-password", Area.PUBLIC),
    RouteRule(PORTAL_ROOT, Area.CLIENT_PORTAL),
    RouteRule("/portal-cliente", Area.CLIENT_PORTAL),
)


def normalize_path(path: Optional[str]) -> str:
    path = (path or SYSTEM_ROOT).split("?", 1)[0].split("#", 1)[0] or SYSTEM_ROOT
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or SYSTEM_ROOT
    return path


def classify(path: str) -> Area:
    """Return the area a path belongs to; anything not listed is a system route."""
    path = normalize_path(path)
    for rule in ROUTE_TABLE:
        if rule.matches(path):
            return rule.area
    return Area.SYSTEM


def reconcile(role: Optional[str], path: str) -> Optional[str]:
    """Return the path to redirect to, or ``None`` when ``path`` may be shown."""
    path = normalize_path(path)
    area = classify(path)

    if role is None:
        return None if area is Area.PUBLIC else LOGIN_PATH

    if role == ROLE_CLIENT:
        if area is Area.SYSTEM:
            return PORTAL_ROOT
        return None

    if role in STAFF_ROLES:
        if area is Area.CLIENT_PORTAL or path == LOGIN_PATH:
            return SYSTEM_ROOT
        return None

    return None
