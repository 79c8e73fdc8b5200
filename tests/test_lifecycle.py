"""Tests for install, update, uninstall and backup."""

import asyncio
import json

from sqlalchemy.exc import SQLAlchemyError

from nexus.plugins.errors import PluginErrorKind
from nexus.plugins.events import PluginEventType
from nexus.plugins.lifecycle import UploadedArtifact

from conftest import make_descriptor, write_plugin


class TestInstall:
    """Tests for PluginLifecycleManager.install."""

    async def test_install_then_load(self, manager, plugins_dir, store):
        result = await manager.lifecycle.install(make_descriptor("Gamma", featured=True))

        assert result.success
        assert result.error is None
        assert result.plugin["name"] == "Gamma"
        assert result.plugin["installedAt"] is not None
        assert (plugins_dir / "gamma" / "plugin.json").exists()
        assert store.find_one("Gamma")["active"] is True
        # Routable only after the next load pass
        assert manager.registry.by_name("Gamma") is None

        await manager.load_all()
        gamma = manager.registry.get("Gamma@1.0.0")
        assert gamma is not None
        assert gamma.featured
        assert manager.routes.is_bound("Gamma@1.0.0")

    async def test_install_keeps_upload(self, manager, tmp_path):
        upload = UploadedArtifact(filename="gamma.zip", content=b"PK\x03\x04")

        result = await manager.lifecycle.install(make_descriptor("Gamma"), upload)

        assert result.success
        artifacts = list((tmp_path / "uploads").glob("*-gamma.zip"))
        assert len(artifacts) == 1
        assert artifacts[0].read_bytes() == b"PK\x03\x04"
        assert result.data["artifact"] == str(artifacts[0])

    async def test_install_invalid_descriptor(self, manager, store):
        result = await manager.lifecycle.install({"name": "Gamma"})

        assert not result.success
        assert result.error == PluginErrorKind.INVALID_CONFIG
        assert result.reasons == ["Missing required fields: version, description, route, category"]
        assert store.find_all() == []
        assert manager.events.recent(PluginEventType.PLUGIN_INSTALL_ERROR)

    async def test_install_name_conflict(self, manager, plugins_dir):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.install(make_descriptor("Alpha", route="/another"))

        assert not result.success
        assert result.error == PluginErrorKind.CONFLICT
        assert "Alpha already exists" in result.message

    async def test_install_route_conflict(self, manager, store):
        await manager.lifecycle.install(make_descriptor("Gamma", route="/shared"))

        result = await manager.lifecycle.install(make_descriptor("Delta", route="/shared"))

        assert result.error == PluginErrorKind.CONFLICT
        assert "already uses route /shared" in result.message
        assert store.find_one("Delta") is None
        assert manager.registry.count() == 0

    async def test_install_folder_conflict(self, manager, plugins_dir, store):
        await manager.lifecycle.install(make_descriptor("Foo Bar", route="/foo"))

        result = await manager.lifecycle.install(make_descriptor("foo.bar", route="/foo-dot"))

        assert result.error == PluginErrorKind.CONFLICT
        assert "already uses folder foo-bar" in result.message
        assert store.find_one("foo.bar") is None
        manifest = json.loads((plugins_dir / "foo-bar" / "plugin.json").read_text(encoding="utf-8"))
        assert manifest["name"] == "Foo Bar"

    async def test_install_keeps_foreign_plugin_json(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "foo-bar", make_descriptor("foo_bar", route="/other"))

        result = await manager.lifecycle.install(make_descriptor("Foo Bar", route="/foo"))

        assert result.error == PluginErrorKind.CONFLICT
        assert "already owns folder foo-bar" in result.message
        assert store.find_one("Foo Bar") is None
        manifest = json.loads((plugins_dir / "foo-bar" / "plugin.json").read_text(encoding="utf-8"))
        assert manifest["name"] == "foo_bar"

    async def test_failed_persist_removes_files(self, manager, plugins_dir, store, tmp_path, monkeypatch):
        def locked(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        upload = UploadedArtifact(filename="gamma.zip", content=b"PK\x03\x04")
        with monkeypatch.context() as m:
            m.setattr(store, "upsert", locked)
            result = await manager.lifecycle.install(make_descriptor("Gamma"), upload)

        assert result.error == PluginErrorKind.IO_FAILURE
        assert not (plugins_dir / "gamma").exists()
        assert list((tmp_path / "uploads").glob("*-gamma.zip")) == []

        await manager.load_all()
        assert manager.registry.by_name("Gamma") is None
        assert store.find_one("Gamma") is None

    async def test_concurrent_installs_of_one_name(self, manager, store):
        first, second = await asyncio.gather(
            manager.lifecycle.install(make_descriptor("Gamma")),
            manager.lifecycle.install(make_descriptor("Gamma")),
        )

        assert [first.success, second.success] == [True, False]
        assert second.error == PluginErrorKind.CONFLICT
        assert manager.lifecycle._name_locks == {}

    async def test_reinstall_after_uninstall(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()
        await manager.uninstall_plugin("Alpha")

        result = await manager.install_plugin(make_descriptor("Alpha", version="1.1.0"))

        assert result.success
        assert result.data["reload"]["total"] == 1
        assert manager.registry.keys() == ["Alpha@1.1.0"]
        assert store.find_one("Alpha")["active"] is True


class TestUninstall:

    async def test_uninstall(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.uninstall("Alpha")

        assert result.success
        assert manager.registry.count() == 0
        assert "Alpha@1.0.0" not in manager.cache
        assert store.find_one("Alpha")["status"] == "inactive"
        assert manager.events.recent(PluginEventType.PLUGIN_UNINSTALLED)[-1].payload["name"] == "Alpha"

    async def test_uninstall_unknown(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.uninstall("Ghost")

        assert not result.success
        assert result.error == PluginErrorKind.NOT_FOUND
        assert result.message == "Failed to uninstall plugin: Plugin Ghost not found"
        assert manager.registry.keys() == ["Alpha@1.0.0"]
        assert store.find_one("Alpha")["active"] is True


class TestUpdate:
    """Tests for PluginLifecycleManager.update."""

    async def test_update_fields(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.update("Alpha", {"description": "Sharper", "featured": True})

        assert result.success
        assert store.find_one("Alpha")["description"] == "Sharper"
        alpha = manager.registry.get("Alpha@1.0.0")
        assert alpha.description == "Sharper"
        assert alpha.featured
        assert manager.events.recent(PluginEventType.PLUGIN_UPDATED)

    async def test_version_change_rekeys(self, manager, plugins_dir):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()
        manager.cache.record_request("Alpha@1.0.0")

        result = await manager.lifecycle.update("Alpha", {"version": "1.1.0"})

        assert result.success
        assert manager.registry.keys() == ["Alpha@1.1.0"]
        assert manager.cache.get("Alpha@1.1.0").requests == 1
        assert manager.routes.is_bound("Alpha@1.1.0")
        assert not manager.routes.is_bound("Alpha@1.0.0")

    async def test_deactivate_through_update(self, manager, plugins_dir):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.update("Alpha", {"active": False})

        assert result.success
        assert manager.registry.count() == 0

    async def test_update_accepts_plugin_json_aliases(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.update("Alpha", {"hasView": True})

        assert result.success
        assert store.find_one("Alpha")["has_view"] is True

    async def test_update_rejects_invalid_values(self, manager, plugins_dir, store):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        result = await manager.lifecycle.update("Alpha", {"route": "Not A Route"})

        assert result.error == PluginErrorKind.INVALID_CONFIG
        assert store.find_one("Alpha")["route"] == "/alpha"

    async def test_update_rejects_unknown_fields_and_renames(self, manager, plugins_dir):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        await manager.load_all()

        unknown = await manager.lifecycle.update("Alpha", {"colour": "red"})
        rename = await manager.lifecycle.update("Alpha", {"name": "Omega"})

        assert unknown.error == PluginErrorKind.INVALID_CONFIG
        assert unknown.reasons == ["Unknown fields: colour"]
        assert rename.error == PluginErrorKind.INVALID_CONFIG

    async def test_update_route_conflict(self, manager, plugins_dir):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        write_plugin(plugins_dir, "gamma", make_descriptor("Gamma"))
        await manager.load_all()

        result = await manager.lifecycle.update("Alpha", {"route": "/gamma"})

        assert result.error == PluginErrorKind.CONFLICT

    async def test_update_unknown_plugin(self, manager):
        result = await manager.lifecycle.update("Ghost", {"featured": True})

        assert result.error == PluginErrorKind.NOT_FOUND


class TestBackup:

    async def test_backup_writes_snapshot(self, manager, plugins_dir):
        write_plugin(plugins_dir, "alpha", make_descriptor("Alpha"))
        write_plugin(plugins_dir, "gamma", make_descriptor("Gamma"))
        await manager.load_all()

        result = await manager.backup()

        assert result.success
        assert result.data["count"] == 2
        with open(result.data["backup_file"], encoding="utf-8") as f:
            snapshot = json.load(f)
        assert sorted(p["name"] for p in snapshot) == ["Alpha", "Gamma"]
