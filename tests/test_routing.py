"""
Tests for the route table and redirect decisions.
"""

import pytest

from services.routing import Area, classify, normalize_path, reconcile


class TestClassify:
    @pytest.mark.parametrize(
        "path, area",
        [
            ("/login", Area.PUBLIC),
            ("/register", Area.PUBLIC),
            ("/forgot-password/token", Area.PUBLIC),
            ("/portal", Area.CLIENT_PORTAL),
            ("/portal/12", Area.CLIENT_PORTAL),
            ("/portal-cliente/3", Area.CLIENT_PORTAL),
            ("/", Area.SYSTEM),
            ("/casos/4", Area.SYSTEM),
            ("/clientes", Area.SYSTEM),
            ("/equipo/2", Area.SYSTEM),
        ],
    )
    def test_known_areas(self, path, area):
        assert classify(path) is area

    def test_prefix_match_respects_segments(self):
        assert classify("/portalx") is Area.SYSTEM
        assert classify("/loginx") is Area.SYSTEM

    def test_normalize_path(self):
        assert normalize_path("") == "/"
        assert normalize_path("casos/") == "/casos"
        assert normalize_path("/portal?tab=docs") == "/portal"


class TestReconcile:
    def test_anonymous_is_sent_to_login(self):
        assert reconcile(None, "/") == "/login"
        assert reconcile(None, "/portal") == "/login"

    def test_anonymous_may_see_public_pages(self):
        assert reconcile(None, "/login") is None
        assert reconcile(None, "/forgot-password") is None

    def test_client_is_kept_in_portal(self):
        assert reconcile("cliente", "/") == "/portal"
        assert reconcile("cliente", "/casos/1") == "/portal"
        assert reconcile("cliente", "/portal") is None
        assert reconcile("cliente", "/portal/5") is None
        assert reconcile("cliente", "/portal-cliente/3") is None
        assert reconcile("cliente", "/login") is None

    @pytest.mark.parametrize("role", ["administrador", "empleado"])
    def test_staff_is_kept_out_of_portal(self, role):
        assert reconcile(role, "/portal") == "/"
        assert reconcile(role, "/portal/3") == "/"
        assert reconcile(role, "/portal-cliente/3") == "/"

    @pytest.mark.parametrize("role", ["administrador", "empleado"])
    def test_staff_on_login_goes_home(self, role):
        assert reconcile(role, "/login") == "/"
        assert reconcile(role, "/register") is None

    @pytest.mark.parametrize("role", ["administrador", "empleado"])
    def test_staff_may_use_system_routes(self, role):
        assert reconcile(role, "/") is None
        assert reconcile(role, "/clientes/9") is None

    def test_unknown_role_is_not_redirected(self):
        assert reconcile("auditor", "/casos") is None
