"""Tests for the gateway admin endpoints."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pathgate.routes import router


@pytest.fixture
def app(active_route_table, monkeypatch):
    monkeypatch.setattr("pathgate.vars.PUBLIC_URL", "")
    monkeypatch.setattr("pathgate.vars.TRUST_FORWARDED_HEADERS", False)
    test_app = FastAPI()
    test_app.include_router(router)
    return test_app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_health(client):
    resp = client.get("/.gateway/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "routes": 6}


def test_list_routes(client):
    resp = client.get("/.gateway/routes")
    assert resp.status_code == 200
    data = resp.json()
    assert data["default_rule"]["name"] == "web"
    app1 = data["rules"][0]
    assert app1["name"] == "app1"
    assert app1["paths"] == ["/app1/*"]
    assert app1["auth"]["mode"] == "easy_auth"
    assert app1["auth"]["forward_proxy"]["convention"] == "Standard"


class TestResolve:
    def test_resolve_authenticated_rule(self, client):
        resp = client.post(
            "/.gateway/resolve",
            json={"path": "/app1/reports", "host": "www.contoso.com", "client_ip": "10.0.0.1"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["route"] == "app1"
        assert data["pattern"] == "/app1/*"
        assert data["mount_prefix"] == "/app1"
        assert data["is_default"] is False
        assert data["backend_url"] == "https://app1.azurewebsites.net/reports"
        assert data["forwarded_headers"]["host"] == "app1.azurewebsites.net"
        assert data["forwarded_headers"]["x-original-host"] == "www.contoso.com"
        assert data["forwarded_headers"]["x-forwarded-for"] == "10.0.0.1"
        assert (
            data["callback_url"]
            == "https://www.contoso.com/app1/.auth/login/aad/callback"
        )

    def test_resolve_default_rule(self, client):
        resp = client.post("/.gateway/resolve", json={"path": "/index.html"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["route"] == "web"
        assert data["is_default"] is True
        assert data["callback_url"] is None
        # TestClient sends Host: testserver
        assert data["forwarded_headers"]["x-original-host"] == "testserver"

    def test_resolve_without_match(self, client):
        from pathgate.routing import load_route_table, set_route_table

        set_route_table(
            load_route_table(
                {"rules": [{"name": "a", "paths": ["/a/*"], "backend": "http://a"}]}
            )
        )
        resp = client.post("/.gateway/resolve", json={"path": "/b"})
        assert resp.status_code == 404

    def test_resolve_requires_path(self, client):
        resp = client.post("/.gateway/resolve", json={"host": "www.contoso.com"})
        assert resp.status_code == 422


class TestAuthConfig:
    def test_easy_auth_rule(self, client):
        resp = client.get(
            "/.gateway/routes/app1/auth-config",
            headers={"host": "www.contoso.com"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["route"] == "app1"
        assert data["mode"] == "easy_auth"
        assert data["callback_url"] == "http://www.contoso.com/app1/.auth/login/aad/callback"
        assert data["config"]["httpSettings"]["forwardProxy"] == {"convention": "Standard"}
        assert data["config"]["login"]["allowedExternalRedirectUrls"] == [
            "http://www.contoso.com"
        ]
        assert data["warnings"] == []

    def test_public_url_used(self, client, monkeypatch):
        monkeypatch.setattr("pathgate.vars.PUBLIC_URL", "https://www.contoso.com")
        resp = client.get("/.gateway/routes/legacy/auth-config")
        assert resp.status_code == 200
        data = resp.json()
        assert (
            data["callback_url"]
            == "https://www.contoso.com/legacy/.auth/login/google/callback"
        )
        assert data["config"]["httpSettings"]["routes"]["apiPrefix"] == "/legacy/.auth"

    def test_custom_auth_rule(self, client):
        resp = client.get("/.gateway/routes/api/auth-config")
        assert resp.status_code == 200
        data = resp.json()
        assert data["mode"] == "custom"
        assert data["config"]["trustedHeaders"]["host"] == "X-Gateway-Host"
        assert len(data["warnings"]) == 1

    def test_rule_without_auth(self, client):
        resp = client.get("/.gateway/routes/api-v2/auth-config")
        assert resp.status_code == 404

    def test_unknown_rule(self, client):
        resp = client.get("/.gateway/routes/nope/auth-config")
        assert resp.status_code == 404
