"""Plugin capability interface and the table of installed implementations."""

from __future__ import annotations

import importlib.metadata
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from fastapi import Request

from nexus.constants import PLUGIN_ENTRY_POINT_GROUP
from nexus.plugins.descriptor import PluginDescriptor, slugify

if TYPE_CHECKING:
    from nexus.plugins.routing import PluginRouteTable

logger = logging.getLogger(__name__)


def plugin_logger(descriptor: PluginDescriptor) -> logging.Logger:
    """Logger for code running on behalf of a plugin, named plugin.<slug>."""
    return logging.getLogger(f"plugin.{descriptor.slug}")


class PluginImplementation(ABC):
    """Abstract base class for plugin code.

    A plugin folder only carries data (plugin.json, optional view); the code
    that serves its route is an implementation registered in
    PluginProviders under the plugin's slug.
    """

    # Object attached to descriptor.controller when the plugin is loaded.
    controller: Any = None

    def register_routes(self, routes: PluginRouteTable, descriptor: PluginDescriptor) -> None:
        """Bind this plugin's handler for descriptor.route. Override to bind differently."""
        routes.register_route(descriptor, self.handle)

    @abstractmethod
    async def handle(self, request: Request, descriptor: PluginDescriptor) -> Any:
        """Serve a request addressed to the plugin's route.

        Args:
            request: Incoming request (path is descriptor.route or below it)
            descriptor: The registered descriptor for this plugin

        Returns:
            A Response, or any JSON-serializable value
        """
        ...

    def has_view(self) -> bool:
        """Whether the plugin renders a view. Override for code-provided views."""
        return False


class PluginProviders:
    """Runtime table of plugin implementations keyed by plugin slug."""

    def __init__(self):
        self._providers: Dict[str, PluginImplementation] = {}

    def register(self, name: str, implementation: PluginImplementation) -> None:
        """Register an implementation for the plugin called `name` (or its slug)."""
        if not isinstance(implementation, PluginImplementation):
            raise TypeError(f"{implementation!r} is not a PluginImplementation")
        slug = slugify(name)
        if slug in self._providers:
            logger.warning(f"Implementation for '{slug}' already registered, overwriting")
        self._providers[slug] = implementation
        logger.debug(f"Registered implementation for plugin '{slug}'")

    def get(self, descriptor: PluginDescriptor) -> Optional[PluginImplementation]:
        return self._providers.get(descriptor.slug)

    def has(self, name: str) -> bool:
        return slugify(name) in self._providers

    def names(self) -> List[str]:
        return sorted(self._providers)

    def load_entry_points(self, group: str = PLUGIN_ENTRY_POINT_GROUP) -> List[str]:
        """Register implementations published by installed packages.

        Packages declare them in their pyproject.toml, e.g.::

            [project.entry-points."nexuscore.plugins"]
            image-tools = "image_tools.plugin:ImageToolsPlugin"

        Returns:
            Names registered from entry points
        """
        registered = []
        for ep in importlib.metadata.entry_points(group=group):
            try:
                factory = ep.load()
                implementation = factory() if callable(factory) else factory
                self.register(ep.name, implementation)
                registered.append(ep.name)
            except Exception as e:
                logger.error(f"Error loading plugin entry point '{ep.name}': {e}")
        if registered:
            logger.info(f"Loaded {len(registered)} plugin implementation(s) from entry points")
        return registered
