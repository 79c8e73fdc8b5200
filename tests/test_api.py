"""Tests for the plugin REST API and request dispatch."""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from nexus import constants
from nexus.dependencies import get_plugin_manager
from nexus.plugins.builtin import register_builtin_plugins
from nexus.plugins.errors import ReloadInProgressError
from nexus.plugins.routing import create_dispatch_router
from nexus.routers import plugins_router

from conftest import make_descriptor, write_plugin

ADMIN = {"X-Admin-Token": "secret"}


@pytest.fixture
def client(manager, monkeypatch):
    monkeypatch.setattr(constants, "ADMIN_TOKEN", "secret")
    app = FastAPI()
    app.include_router(plugins_router)
    app.include_router(create_dispatch_router(lambda: manager.routes))
    app.dependency_overrides[get_plugin_manager] = lambda: manager
    return TestClient(app)


@pytest.fixture
def loaded(client, plugins_dir):
    write_plugin(plugins_dir, "alpha", make_descriptor("Alpha", category="media", featured=True, tags=["images"]))
    write_plugin(plugins_dir, "gamma", make_descriptor("Gamma", category="ai"))
    write_plugin(plugins_dir, "broken", make_descriptor("Broken"))
    response = client.post("/api/plugins/reload", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["total"] == 3
    return client


class TestQueries:
    """Tests for the public read endpoints."""

    def test_list_plugins(self, loaded):
        names = [p["name"] for p in loaded.get("/api/plugins/").json()["plugins"]]
        assert sorted(names) == ["Alpha", "Broken", "Gamma"]

    def test_list_by_category_and_query(self, loaded):
        by_category = loaded.get("/api/plugins/", params={"category": "ai"}).json()["plugins"]
        by_query = loaded.get("/api/plugins/", params={"q": "IMAGES"}).json()["plugins"]
        assert [p["name"] for p in by_category] == ["Gamma"]
        assert [p["name"] for p in by_query] == ["Alpha"]

    def test_categories_and_featured(self, loaded):
        assert sorted(loaded.get("/api/plugins/categories").json()["categories"]) == ["ai", "media", "tools"]
        assert [p["name"] for p in loaded.get("/api/plugins/featured").json()["plugins"]] == ["Alpha"]

    def test_plugin_info(self, loaded):
        loaded.get("/alpha")
        info = loaded.get("/api/plugins/Alpha").json()
        assert info["route"] == "/alpha"
        assert info["route_bound"] is True
        assert info["stats"]["requests"] == 1

    def test_plugin_info_not_found(self, loaded):
        assert loaded.get("/api/plugins/Ghost").status_code == 404


class TestAdminAuth:

    def test_missing_or_wrong_token(self, client):
        assert client.post("/api/plugins/reload").status_code == 403
        assert client.post("/api/plugins/reload", headers={"X-Admin-Token": "nope"}).status_code == 403
        assert client.delete("/api/plugins/Alpha").status_code == 403

    def test_admin_disabled_without_configured_token(self, client, monkeypatch):
        monkeypatch.setattr(constants, "ADMIN_TOKEN", "")
        response = client.get("/api/plugins/stats", headers=ADMIN)
        assert response.status_code == 403
        assert "NEXUS_ADMIN_TOKEN" in response.json()["detail"]


class TestAdminOperations:
    """Tests for install/update/uninstall/reload/backup endpoints."""

    def test_install_makes_plugin_routable(self, loaded):
        response = loaded.post(
            "/api/plugins/install",
            data={"descriptor": json.dumps(make_descriptor("Delta"))},
            files={"file": ("delta.zip", b"PK\x03\x04", "application/zip")},
            headers=ADMIN,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["artifact"].endswith("-delta.zip")
        # No implementation registered for Delta: listed but without a handler
        assert loaded.get("/api/plugins/Delta").json()["route_bound"] is False
        assert loaded.get("/delta").status_code == 404

    def test_install_registered_implementation(self, client, manager):
        response = client.post(
            "/api/plugins/install",
            data={"descriptor": json.dumps(make_descriptor("Gamma"))},
            headers=ADMIN,
        )
        assert response.status_code == 201
        assert client.get("/gamma").json()["plugin"] == "Gamma"

    def test_install_rejects_bad_json(self, client):
        response = client.post("/api/plugins/install", data={"descriptor": "{nope"}, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "PARSE_FAILURE"

    def test_install_invalid_descriptor(self, client):
        response = client.post(
            "/api/plugins/install",
            data={"descriptor": json.dumps(make_descriptor("Delta", route="nope"))},
            headers=ADMIN,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_CONFIG"

    def test_install_conflict(self, loaded):
        response = loaded.post(
            "/api/plugins/install",
            data={"descriptor": json.dumps(make_descriptor("Alpha", route="/other"))},
            headers=ADMIN,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"

    def test_update(self, loaded):
        response = loaded.put("/api/plugins/Gamma", json={"changes": {"featured": True}}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["plugin"]["featured"] is True
        featured = [p["name"] for p in loaded.get("/api/plugins/featured").json()["plugins"]]
        assert "Gamma" in featured

    def test_update_requires_changes(self, loaded):
        response = loaded.put("/api/plugins/Gamma", json={"changes": {}}, headers=ADMIN)
        assert response.status_code == 422

    def test_update_unknown_plugin(self, loaded):
        response = loaded.put("/api/plugins/Ghost", json={"changes": {"featured": True}}, headers=ADMIN)
        assert response.status_code == 404

    def test_uninstall_stops_routing_immediately(self, loaded):
        assert loaded.get("/alpha").status_code == 200

        response = loaded.delete("/api/plugins/Alpha", headers=ADMIN)

        assert response.status_code == 200
        assert loaded.get("/alpha").status_code == 404
        assert loaded.delete("/api/plugins/Alpha", headers=ADMIN).status_code == 404

    def test_reload_while_reloading(self, loaded, manager, monkeypatch):
        monkeypatch.setattr(manager, "load_all", AsyncMock(side_effect=ReloadInProgressError()))
        response = loaded.post("/api/plugins/reload", headers=ADMIN)
        assert response.status_code == 409
        assert "already in progress" in response.json()["detail"]

    def test_stats_health_and_backup(self, loaded):
        stats = loaded.get("/api/plugins/stats", headers=ADMIN).json()
        assert stats["total"] == 3
        assert stats["loaded"] is True
        assert "alpha" in stats["implementations"]

        health = loaded.get("/api/plugins/health", headers=ADMIN).json()
        assert health["total"] == 3

        backup = loaded.post("/api/plugins/backup", headers=ADMIN).json()
        assert backup["data"]["count"] == 3


class TestDispatch:
    """Tests for the catch-all plugin dispatcher."""

    def test_subpaths_and_methods(self, loaded):
        assert loaded.get("/alpha/sub/path").json()["path"] == "/alpha/sub/path"
        assert loaded.post("/alpha", json={}).json()["plugin"] == "Alpha"

    def test_unknown_path(self, loaded):
        assert loaded.get("/nothing-here").status_code == 404

    def test_handler_failure_is_counted(self, loaded, manager):
        response = loaded.get("/broken")

        assert response.status_code == 500
        entry = manager.cache.get("Broken@1.0.0")
        assert entry.requests == 1
        assert entry.errors == 1

    def test_builtin_hello_world(self, client, manager, providers, plugins_dir):
        register_builtin_plugins(providers)
        write_plugin(
            plugins_dir,
            "hello-world",
            make_descriptor("Hello World", settings={"default_name": "world"}),
        )
        client.post("/api/plugins/reload", headers=ADMIN)

        assert client.get("/hello-world").json()["message"] == "Hello, world!"
        greeting = client.get("/hello-world/greet", params={"name": "Ada"}).json()
        assert greeting["message"] == "Hello, Ada!"
        assert greeting["path"] == "/greet"


class TestApplication:

    def test_root_and_health(self, manager, plugins_dir, monkeypatch):
        import app as nexus_app

        monkeypatch.setattr("nexus.dependencies._plugin_manager_instance", manager)
        monkeypatch.setattr(constants, "ADMIN_TOKEN", "secret")
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))

        client = TestClient(nexus_app.app)
        assert client.post("/api/plugins/reload", headers=ADMIN).status_code == 200
        assert client.get("/health").json()["plugins"] == {"total": 1, "active": 1}
        assert client.get("/").json()["plugins"] == 1
        assert client.get("/alpha").json()["plugin"] == "Alpha"
