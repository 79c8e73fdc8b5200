"""Plugin loader - rebuilds the registry from persisted records and plugin folders."""

import asyncio
import importlib.util
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from nexus.plugins.base import PluginProviders
from nexus.plugins.cache import PluginCache
from nexus.plugins.descriptor import PluginDescriptor
from nexus.plugins.discovery import PluginDiscovery
from nexus.plugins.errors import PluginError, PluginErrorKind, ReloadInProgressError, classify_error
from nexus.plugins.events import PluginEventChannel, PluginEventType
from nexus.plugins.registry import PluginRegistry
from nexus.plugins.routing import PluginRouteTable
from nexus.plugins.store import PluginRecordStore
from nexus.plugins.validator import validate_descriptor

logger = logging.getLogger(__name__)


@dataclass
class LoadReport:
    """Outcome of one full load pass."""

    total: int = 0
    active: int = 0
    errors: int = 0
    duration_ms: int = 0
    loaded_at: Optional[datetime] = None
    failed: bool = False
    issues: List[Dict[str, Any]] = field(default_factory=list)

    def add_issue(self, source: str, kind: PluginErrorKind, message: str, counted: bool = True) -> None:
        if counted:
            self.errors += 1
        self.issues.append({"source": source, "kind": kind.value, "message": message})

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "active": self.active,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
            "failed": self.failed,
            "issues": self.issues,
        }


class PluginLoader:
    """Runs the two discovery passes (persisted, then filesystem).

    Persisted records are processed first, so they take precedence over a
    plugin folder carrying the same name@version.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        cache: PluginCache,
        store: PluginRecordStore,
        discovery: PluginDiscovery,
        providers: PluginProviders,
        routes: PluginRouteTable,
        events: PluginEventChannel,
    ):
        self.registry = registry
        self.cache = cache
        self.store = store
        self.discovery = discovery
        self.providers = providers
        self.routes = routes
        self.events = events
        self.loaded = False
        self.last_report: Optional[LoadReport] = None
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def load_all(self) -> LoadReport:
        """Clear the registry and load every plugin again.

        Raises:
            ReloadInProgressError: another load pass is running
        """
        if self._lock.locked():
            raise ReloadInProgressError()
        async with self._lock:
            return self._load_all()

    def _load_all(self) -> LoadReport:
        start = time.monotonic()
        report = LoadReport()
        logger.info("Loading plugins...")

        try:
            self.registry.clear()
            self.cache.clear()

            self._load_from_store(report)
            self._load_from_filesystem(report)

            self._finish(report, start)
            self.loaded = True
            self.events.emit(PluginEventType.PLUGINS_LOADED, report.to_dict())
            logger.info(
                f"Loaded {report.total} plugins ({report.active} active) in {report.duration_ms}ms"
            )
        except Exception as e:
            # Whatever was registered before the failure stays registered.
            logger.exception("Plugin loading failed")
            report.failed = True
            report.add_issue("loader", classify_error(e), str(e))
            self._finish(report, start)
            self.events.emit(PluginEventType.PLUGINS_ERROR, {"error": str(e), **report.to_dict()})

        self.last_report = report
        return report

    def _finish(self, report: LoadReport, start: float) -> None:
        report.total = self.registry.count()
        report.active = len(self.registry.get_active())
        report.duration_ms = int((time.monotonic() - start) * 1000)
        report.loaded_at = datetime.now(timezone.utc)

    def _load_from_store(self, report: LoadReport) -> None:
        """Register every active persisted record not registered yet."""
        for record in self.store.find_active():
            name = record.get("name")
            try:
                validation = validate_descriptor(record)
                if not validation:
                    report.add_issue(f"store:{name}", PluginErrorKind.INVALID_CONFIG, validation.summary())
                    logger.warning(f"Skipping stored plugin {name}: {validation.summary()}")
                    continue

                descriptor = PluginDescriptor.model_validate(record)
                if self.registry.has(descriptor.key):
                    logger.debug(f"Skipping stored plugin {descriptor.key}: already loaded")
                    continue

                plugin_dir = self.discovery.plugin_dir_for(descriptor)
                self._attach(descriptor, plugin_dir if plugin_dir.is_dir() else None)
                self.cache.create(descriptor.key, plugin_dir if plugin_dir.is_dir() else None)
                self.registry.register(descriptor)
                logger.debug(f"Database plugin: {descriptor.name} v{descriptor.version}")

            except (ValidationError, PluginError) as e:
                report.add_issue(f"store:{name}", classify_error(e), str(e))
                logger.warning(f"Skipping stored plugin {name}: {e}")
            except Exception as e:
                report.add_issue(f"store:{name}", classify_error(e), str(e))
                logger.error(f"Failed to register stored plugin {name}: {e}")

    def _load_from_filesystem(self, report: LoadReport) -> None:
        for plugin_dir in self.discovery.list_directories():
            try:
                self._load_folder(plugin_dir, report)
            except Exception as e:
                report.add_issue(plugin_dir.name, classify_error(e), str(e))
                logger.error(f"Failed to load plugin {plugin_dir.name}: {e}")
                self.events.emit(
                    PluginEventType.PLUGIN_ERROR,
                    {"folder": plugin_dir.name, "error": str(e)},
                )

    def _load_folder(self, plugin_dir: Path, report: LoadReport) -> None:
        folder = plugin_dir.name
        data = self.discovery.read_descriptor(plugin_dir)
        if data is None:
            report.add_issue(folder, PluginErrorKind.PARSE_FAILURE, "No plugin.json found", counted=False)
            logger.warning(f"Skipping {folder}: No plugin.json found")
            return

        validation = validate_descriptor(data)
        if not validation:
            report.add_issue(folder, PluginErrorKind.INVALID_CONFIG, validation.summary())
            logger.warning(f"Skipping {folder}: Invalid plugin configuration ({validation.summary()})")
            return

        descriptor = PluginDescriptor.model_validate(data)
        if self.registry.has(descriptor.key):
            logger.debug(f"Skipping {descriptor.name}: Already loaded")
            return

        existing = self.store.find_one(descriptor.name)
        if existing is not None and not existing["active"]:
            logger.info(f"Skipping {descriptor.name}: plugin was uninstalled")
            return

        # One version per name: the store keeps a single record per plugin name
        loaded = self.registry.by_name(descriptor.name)
        if loaded is not None:
            message = f"{loaded.key} is already loaded"
            report.add_issue(folder, PluginErrorKind.CONFLICT, message)
            logger.warning(f"Skipping {folder}: {descriptor.key} conflicts, {message}")
            return

        self._attach(descriptor, plugin_dir)
        if descriptor.dependencies:
            self.check_dependencies(descriptor)

        self.cache.create(descriptor.key, plugin_dir)

        stored = PluginDescriptor.model_validate(self.store.upsert(descriptor))
        stored.controller = descriptor.controller

        self.registry.register(stored)
        logger.info(f"Plugin loaded: {stored.name} v{stored.version}")
        self.events.emit(
            PluginEventType.PLUGIN_LOADED,
            {"name": stored.name, "version": stored.version, "key": stored.key, "route": stored.route},
        )

    def _attach(self, descriptor: PluginDescriptor, plugin_dir: Optional[Path]) -> None:
        """Bind routes, controller and view flag contributed by the plugin."""
        implementation = self.providers.get(descriptor)
        if implementation is not None:
            if not self.routes.is_bound(descriptor.key):
                implementation.register_routes(self.routes, descriptor)
                logger.debug(f"Routes registered: {descriptor.name}")
            if implementation.controller is not None:
                descriptor.controller = implementation.controller
                logger.debug(f"Controller loaded: {descriptor.name}")
            if implementation.has_view():
                descriptor.has_view = True

        if plugin_dir is not None and self.discovery.has_view(plugin_dir):
            descriptor.has_view = True
            logger.debug(f"View available: {descriptor.name}")

    def check_dependencies(self, descriptor: PluginDescriptor) -> List[str]:
        """Report dependencies that cannot be imported. Never blocks loading.

        Returns:
            Names of missing dependencies
        """
        missing = []
        for dependency in descriptor.dependencies:
            try:
                found = importlib.util.find_spec(dependency) is not None
            except (ImportError, ValueError):
                found = False
            if not found:
                missing.append(dependency)

        if missing:
            logger.warning(
                f"{PluginErrorKind.DEPENDENCY_MISSING.value}: missing dependencies for "
                f"{descriptor.name}: {', '.join(missing)}"
            )
        return missing
