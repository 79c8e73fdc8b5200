"""Plugin manager - top-level orchestrator for the plugin system."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional

from nexus.constants import FEATURED_LIMIT, HEALTH_CHECK_INTERVAL, HEALTH_ERROR_THRESHOLD
from nexus.plugins.base import PluginProviders
from nexus.plugins.cache import PluginCache
from nexus.plugins.descriptor import PluginDescriptor
from nexus.plugins.discovery import PluginDiscovery
from nexus.plugins.errors import OperationResult, ReloadInProgressError
from nexus.plugins.events import PluginEventChannel
from nexus.plugins.health import HealthReport, PluginHealthMonitor
from nexus.plugins.lifecycle import PluginLifecycleManager, UploadedArtifact
from nexus.plugins.loader import LoadReport, PluginLoader
from nexus.plugins.registry import PluginRegistry
from nexus.plugins.routing import PluginRouteTable
from nexus.plugins.store import PluginRecordStore

logger = logging.getLogger(__name__)


class PluginManager:
    """Top-level plugin system orchestrator.

    Owns one registry, cache and event channel and hands them to the loader,
    lifecycle manager, health monitor and route table.
    """

    def __init__(
        self,
        plugins_dir: Path,
        uploads_dir: Path,
        store: PluginRecordStore,
        providers: Optional[PluginProviders] = None,
        health_interval: float = HEALTH_CHECK_INTERVAL,
        error_threshold: int = HEALTH_ERROR_THRESHOLD,
        featured_limit: int = FEATURED_LIMIT,
    ):
        self.store = store
        self.providers = providers or PluginProviders()

        self.registry = PluginRegistry(featured_limit=featured_limit)
        self.cache = PluginCache()
        self.events = PluginEventChannel()
        self.discovery = PluginDiscovery(plugins_dir)
        self.routes = PluginRouteTable(self.registry, self.cache)

        self.loader = PluginLoader(
            registry=self.registry,
            cache=self.cache,
            store=store,
            discovery=self.discovery,
            providers=self.providers,
            routes=self.routes,
            events=self.events,
        )
        self.lifecycle = PluginLifecycleManager(
            registry=self.registry,
            cache=self.cache,
            store=store,
            discovery=self.discovery,
            routes=self.routes,
            events=self.events,
            uploads_dir=uploads_dir,
        )
        self.health = PluginHealthMonitor(
            registry=self.registry,
            cache=self.cache,
            events=self.events,
            interval=health_interval,
            error_threshold=error_threshold,
        )

    async def start(self) -> LoadReport:
        """Load all plugins and start the health monitor."""
        report = await self.load_all()
        self.health.start()
        return report

    async def stop(self) -> None:
        await self.health.stop()
        logger.info("Plugin system stopped")

    async def load_all(self) -> LoadReport:
        """Full reload. Raises ReloadInProgressError if one is already running."""
        return await self.loader.load_all()

    async def install_plugin(
        self,
        descriptor_data: Mapping[str, Any],
        upload: Optional[UploadedArtifact] = None,
        reload: bool = True,
    ) -> OperationResult:
        """Install a plugin and, by default, reload so it becomes routable."""
        result = await self.lifecycle.install(descriptor_data, upload)
        if result.success and reload:
            try:
                report = await self.load_all()
                result.data["reload"] = report.to_dict()
            except ReloadInProgressError:
                logger.warning("Reload already in progress; installed plugin loads on the next pass")
                result.data["reload"] = None
        return result

    async def uninstall_plugin(self, name: str) -> OperationResult:
        return await self.lifecycle.uninstall(name)

    async def update_plugin(self, name: str, patch: Mapping[str, Any]) -> OperationResult:
        return await self.lifecycle.update(name, patch)

    async def backup(self) -> OperationResult:
        return await self.lifecycle.backup()

    def check_plugin_health(self) -> HealthReport:
        return self.health.check_plugin_health()

    def get_plugin(self, name: str) -> Optional[PluginDescriptor]:
        return self.registry.by_name(name)

    def get_plugin_info(self, name: str) -> Optional[dict]:
        """Descriptor plus runtime statistics, for admin views."""
        descriptor = self.registry.by_name(name)
        if descriptor is None:
            return None
        info = descriptor.to_dict()
        entry = self.cache.get(descriptor.key)
        info["stats"] = entry.to_dict() if entry else None
        info["route_bound"] = self.routes.is_bound(descriptor.key)
        return info

    def list_plugins(self, category: Optional[str] = None, query: Optional[str] = None) -> List[dict]:
        if query:
            plugins = self.registry.search(query)
            if category:
                plugins = [p for p in plugins if p.category == category]
        elif category:
            plugins = self.registry.by_category(category)
        else:
            plugins = self.registry.get_active()
        return [p.to_dict() for p in plugins]

    def get_categories(self) -> List[str]:
        return self.registry.categories()

    def get_featured(self) -> List[dict]:
        return [p.to_dict() for p in self.registry.featured()]

    def get_stats(self) -> dict:
        report = self.loader.last_report or LoadReport()
        return {
            **report.to_dict(),
            "categories": len(self.registry.categories()),
            "cache_size": len(self.cache),
            "loaded": self.loader.loaded,
            "reloading": self.loader.in_progress,
            "implementations": self.providers.names(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
