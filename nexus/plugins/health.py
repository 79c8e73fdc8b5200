"""Plugin health monitor - periodic report built from runtime statistics."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from nexus.constants import HEALTH_CHECK_INTERVAL, HEALTH_ERROR_THRESHOLD
from nexus.plugins.cache import PluginCache
from nexus.plugins.events import PluginEventChannel, PluginEventType
from nexus.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
WARNING = "warning"
ERROR = "error"


@dataclass
class HealthReport:
    timestamp: datetime
    total: int = 0
    healthy: int = 0
    warnings: int = 0
    errors: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def status_of(self, name: str) -> Optional[str]:
        return next((d["status"] for d in self.details if d["plugin"] == name), None)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total": self.total,
            "healthy": self.healthy,
            "warnings": self.warnings,
            "errors": self.errors,
            "details": self.details,
        }


class PluginHealthMonitor:
    """Reports plugin health; never deactivates anything itself."""

    def __init__(
        self,
        registry: PluginRegistry,
        cache: PluginCache,
        events: PluginEventChannel,
        interval: float = HEALTH_CHECK_INTERVAL,
        error_threshold: int = HEALTH_ERROR_THRESHOLD,
    ):
        self.registry = registry
        self.cache = cache
        self.events = events
        self.interval = interval
        self.error_threshold = error_threshold
        self.last_report: Optional[HealthReport] = None
        self._task: Optional[asyncio.Task] = None

    def check_plugin_health(self) -> HealthReport:
        """Build a health report over every active plugin and emit it."""
        report = HealthReport(timestamp=datetime.now(timezone.utc))

        for descriptor in self.registry.get_active():
            report.total += 1
            detail: Dict[str, Any] = {"plugin": descriptor.name, "key": descriptor.key}
            entry = self.cache.get(descriptor.key)

            if entry is None:
                report.warnings += 1
                detail.update(status=WARNING, message="No runtime statistics")
            elif entry.errors > self.error_threshold:
                report.errors += 1
                detail.update(status=ERROR, message="Too many errors", errors=entry.errors)
            else:
                report.healthy += 1
                detail.update(status=HEALTHY, requests=entry.requests, errors=entry.errors)
            report.details.append(detail)

        logger.debug(
            f"Plugin health check: {report.healthy} healthy, "
            f"{report.warnings} warnings, {report.errors} errors"
        )
        self.last_report = report
        self.events.emit(PluginEventType.PLUGINS_HEALTH, report.to_dict())
        return report

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="plugin-health-monitor")
        logger.info(f"Plugin health monitor started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Plugin health monitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.check_plugin_health()
            except Exception:
                logger.exception("Plugin health check failed")
