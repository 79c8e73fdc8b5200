"""Plugin implementations shipped with NexusCore."""

from typing import Any, Dict

from fastapi import Request

from nexus.plugins.base import PluginImplementation, PluginProviders, plugin_logger
from nexus.plugins.descriptor import PluginDescriptor


class HelloWorldPlugin(PluginImplementation):
    """Greets the caller; the reference implementation for plugin authors."""

    async def handle(self, request: Request, descriptor: PluginDescriptor) -> Dict[str, Any]:
        name = request.query_params.get("name") or descriptor.settings.get("default_name", "world")
        subpath = request.url.path[len(descriptor.route):] or "/"
        plugin_logger(descriptor).debug(f"{request.method} {subpath}")
        return {
            "plugin": descriptor.name,
            "version": descriptor.version,
            "path": subpath,
            "message": f"Hello, {name}!",
        }


def register_builtin_plugins(providers: PluginProviders) -> None:
    providers.register("Hello World", HelloWorldPlugin())
