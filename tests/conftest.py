"""Shared fixtures for plugin system tests."""

import json
from pathlib import Path

import pytest
from fastapi import Request

from nexus.plugins.base import PluginImplementation, PluginProviders
from nexus.plugins.descriptor import PluginDescriptor
from nexus.plugins.manager import PluginManager
from nexus.plugins.store import PluginRecordStore


class EchoPlugin(PluginImplementation):
    """Answers with the plugin name and the requested path."""

    async def handle(self, request: Request, descriptor: PluginDescriptor):
        return {"plugin": descriptor.name, "version": descriptor.version, "path": request.url.path}


class FailingPlugin(PluginImplementation):
    async def handle(self, request: Request, descriptor: PluginDescriptor):
        raise RuntimeError("boom")


def make_descriptor(name="Alpha", route=None, **fields):
    data = {
        "name": name,
        "version": "1.0.0",
        "description": f"{name} plugin",
        "route": route or "/" + name.lower().replace(" ", "-"),
        "category": "tools",
    }
    data.update(fields)
    return data


def write_plugin(plugins_dir: Path, folder: str, data) -> Path:
    """Create <plugins_dir>/<folder>/plugin.json from data (dict or raw text)."""
    plugin_dir = plugins_dir / folder
    plugin_dir.mkdir(parents=True, exist_ok=True)
    content = data if isinstance(data, str) else json.dumps(data)
    (plugin_dir / "plugin.json").write_text(content, encoding="utf-8")
    return plugin_dir


@pytest.fixture
def store():
    return PluginRecordStore.from_url("sqlite://")


@pytest.fixture
def plugins_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def providers():
    table = PluginProviders()
    table.register("Alpha", EchoPlugin())
    table.register("Gamma", EchoPlugin())
    table.register("Broken", FailingPlugin())
    return table


@pytest.fixture
def manager(tmp_path, plugins_dir, store, providers):
    return PluginManager(
        plugins_dir=plugins_dir,
        uploads_dir=tmp_path / "uploads",
        store=store,
        providers=providers,
        health_interval=0.01,
    )
