"""Plugin lifecycle management - install, update, uninstall and backup.

Every public operation returns an OperationResult; errors never escape.
"""

import asyncio
import json
import logging
import shutil
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from nexus.plugins.cache import PluginCache
from nexus.plugins.descriptor import PluginDescriptor, slugify
from nexus.plugins.discovery import PluginDiscovery
from nexus.plugins.errors import ConflictError, InvalidConfigError, OperationResult, PluginNotFoundError
from nexus.plugins.events import PluginEventChannel, PluginEventType
from nexus.plugins.registry import PluginRegistry
from nexus.plugins.routing import PluginRouteTable
from nexus.plugins.store import PluginRecordStore, utcnow
from nexus.plugins.validator import validate_descriptor

logger = logging.getLogger(__name__)

# Patch keys accepted by update(), by field name or plugin.json alias
_FIELD_ALIASES = {
    (info.alias or name): name for name, info in PluginDescriptor.model_fields.items()
}
_FIELD_ALIASES.update({name: name for name in PluginDescriptor.model_fields})
_READ_ONLY_FIELDS = {"name", "controller", "installed_at"}


@dataclass
class UploadedArtifact:
    """A file uploaded alongside a plugin descriptor."""

    filename: str
    content: bytes


class PluginLifecycleManager:
    """Mutates the record store and the registry together."""

    def __init__(
        self,
        registry: PluginRegistry,
        cache: PluginCache,
        store: PluginRecordStore,
        discovery: PluginDiscovery,
        routes: PluginRouteTable,
        events: PluginEventChannel,
        uploads_dir: Path,
    ):
        self.registry = registry
        self.cache = cache
        self.store = store
        self.discovery = discovery
        self.routes = routes
        self.events = events
        self.uploads_dir = uploads_dir
        self._name_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self.ensure_directories()

    @property
    def temp_dir(self) -> Path:
        return self.uploads_dir / "temp"

    @property
    def backup_dir(self) -> Path:
        return self.uploads_dir / "backup"

    def ensure_directories(self) -> None:
        for directory in (self.discovery.plugins_dir, self.uploads_dir, self.temp_dir, self.backup_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def _lock_for(self, name: Any):
        """Serialize operations on one plugin name; the lock is dropped once unused."""
        key = name if isinstance(name, str) else ""
        lock = self._name_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._name_locks[key]

    async def install(
        self,
        descriptor_data: Mapping[str, Any],
        upload: Optional[UploadedArtifact] = None,
    ) -> OperationResult:
        """Install a plugin: write its folder, keep the upload, persist it active.

        The registry is not touched here; the plugin becomes routable on the
        next load pass.

        Args:
            descriptor_data: Raw descriptor (untrusted)
            upload: Optional uploaded artifact stored in the uploads area

        Returns:
            OperationResult with the stored descriptor on success
        """
        name = descriptor_data.get("name") if isinstance(descriptor_data, Mapping) else None
        async with self._lock_for(name):
            try:
                logger.info(f"Installing plugin: {name}")
                return self._install(descriptor_data, upload)
            except Exception as e:
                logger.error(f"Plugin installation failed: {e}")
                self.events.emit(PluginEventType.PLUGIN_INSTALL_ERROR, {"name": name, "error": str(e)})
                return OperationResult.failure(e, "Failed to install plugin")

    def _install(self, descriptor_data: Mapping[str, Any], upload: Optional[UploadedArtifact]) -> OperationResult:
        validation = validate_descriptor(descriptor_data)
        if not validation:
            raise InvalidConfigError(validation.reasons)

        descriptor = PluginDescriptor.model_validate(dict(descriptor_data))
        self._check_conflicts(descriptor)

        descriptor.active = True
        descriptor.status = "active"

        plugin_dir = self.discovery.plugin_dir_for(descriptor)
        created_dir = not plugin_dir.exists()
        previous_manifest = plugin_dir / self.discovery.MANIFEST_FILE
        previous = previous_manifest.read_bytes() if previous_manifest.exists() else None
        manifest_file = self.discovery.write_descriptor(descriptor)

        artifact_path = None
        try:
            if upload is not None:
                suffix = Path(upload.filename).suffix or ".zip"
                artifact_path = self.uploads_dir / f"{int(time.time() * 1000)}-{descriptor.slug}{suffix}"
                artifact_path.write_bytes(upload.content)
                logger.debug(f"Saved plugin upload to {artifact_path}")

            record = self.store.upsert(descriptor, active=True, status="active", installed_at=utcnow())
        except Exception:
            # No folder of a failed install may survive into the next load pass
            self._discard_files(manifest_file, created_dir, previous, artifact_path)
            raise
        stored = PluginDescriptor.model_validate(record)

        logger.info(f"Plugin installed: {stored.name} v{stored.version}")
        self.events.emit(PluginEventType.PLUGIN_INSTALLED, {"name": stored.name, "key": stored.key})
        return OperationResult.ok(
            f"Plugin {stored.name} installed successfully",
            plugin=stored.to_dict(),
            manifest=str(manifest_file),
            artifact=str(artifact_path) if artifact_path else None,
        )

    def _discard_files(
        self,
        manifest_file: Path,
        created_dir: bool,
        previous: Optional[bytes],
        artifact_path: Optional[Path],
    ) -> None:
        """Undo the files written by a failed install."""
        if artifact_path is not None:
            artifact_path.unlink(missing_ok=True)
        if created_dir:
            shutil.rmtree(manifest_file.parent, ignore_errors=True)
        elif previous is not None:
            manifest_file.write_bytes(previous)
        else:
            manifest_file.unlink(missing_ok=True)
        logger.warning(f"Removed files of failed install in {manifest_file.parent}")

    def _check_conflicts(self, descriptor: PluginDescriptor, ignore_name: Optional[str] = None) -> None:
        """Raise ConflictError if an active plugin already has this name, route or folder."""
        active = [(p.name, p.route) for p in self.registry.get_active()]
        active += [(r["name"], r["route"]) for r in self.store.find_active()]

        for name, route in active:
            if name == ignore_name:
                continue
            if name == descriptor.name:
                raise ConflictError(name)
            if route == descriptor.route:
                raise ConflictError(name, f"already uses route {route}")
            if slugify(name) == descriptor.slug:
                raise ConflictError(name, f"already uses folder {descriptor.slug}")

    async def uninstall(self, name: str) -> OperationResult:
        """Deactivate a registered plugin; its route stops resolving immediately."""
        async with self._lock_for(name):
            try:
                logger.info(f"Uninstalling plugin: {name}")
                descriptor = self.registry.by_name(name)
                if descriptor is None:
                    raise PluginNotFoundError(name)

                self.store.update_where(name, {"active": False, "status": "inactive"})
                self.registry.remove(descriptor.key)
                self.cache.remove(descriptor.key)

                logger.info(f"Plugin uninstalled: {name}")
                self.events.emit(PluginEventType.PLUGIN_UNINSTALLED, {"name": name, "key": descriptor.key})
                return OperationResult.ok(f"Plugin {name} uninstalled successfully")

            except Exception as e:
                logger.error(f"Plugin uninstallation failed: {e}")
                return OperationResult.failure(e, "Failed to uninstall plugin")

    async def update(self, name: str, patch: Mapping[str, Any]) -> OperationResult:
        """Merge patch into the persisted record and refresh the registry entry."""
        async with self._lock_for(name):
            try:
                logger.info(f"Updating plugin: {name}")
                return self._update(name, patch)
            except Exception as e:
                logger.error(f"Plugin update failed: {e}")
                return OperationResult.failure(e, "Failed to update plugin")

    def _update(self, name: str, patch: Mapping[str, Any]) -> OperationResult:
        changes = self._normalize_patch(name, patch)

        record = self.store.find_one(name)
        if record is None:
            raise PluginNotFoundError(name)

        merged = {**record, **changes}
        validation = validate_descriptor(merged)
        if not validation:
            raise InvalidConfigError(validation.reasons)
        candidate = PluginDescriptor.model_validate(merged)
        if candidate.active and "route" in changes:
            self._check_conflicts(candidate, ignore_name=name)

        if self.store.update_where(name, changes) == 0:
            raise PluginNotFoundError(name)

        fresh = PluginDescriptor.model_validate(self.store.find_one(name))
        current = self.registry.by_name(name)
        if current is not None:
            fresh.controller = current.controller
            fresh.has_view = fresh.has_view or current.has_view
            if fresh.active:
                self.registry.replace(current.key, fresh)
                if fresh.key != current.key:
                    self.cache.rekey(current.key, fresh.key)
                    self.routes.rebind(current.key, fresh.key)
            else:
                self.registry.remove(current.key)
                self.cache.remove(current.key)

        logger.info(f"Plugin updated: {name}")
        self.events.emit(PluginEventType.PLUGIN_UPDATED, {"name": name, "key": fresh.key})
        return OperationResult.ok(f"Plugin {name} updated successfully", plugin=fresh.to_dict())

    def _normalize_patch(self, name: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        if not isinstance(patch, Mapping):
            raise InvalidConfigError(["Update must be an object"])

        changes: Dict[str, Any] = {}
        unknown = []
        for key, value in patch.items():
            field = _FIELD_ALIASES.get(key)
            if field is None:
                unknown.append(key)
            elif field == "name":
                if value != name:
                    raise InvalidConfigError(["Plugin name cannot be changed"])
            elif field not in _READ_ONLY_FIELDS:
                changes[field] = value
        if unknown:
            raise InvalidConfigError([f"Unknown fields: {', '.join(sorted(unknown))}"])
        return changes

    async def backup(self) -> OperationResult:
        """Write a snapshot of the registry to uploads/backup/<timestamp>/."""
        try:
            target_dir = self.backup_dir / str(int(time.time() * 1000))
            target_dir.mkdir(parents=True, exist_ok=True)
            snapshot = self.registry.snapshot()
            backup_file = target_dir / "plugins-backup.json"
            with open(backup_file, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2, ensure_ascii=False)

            logger.info(f"Plugins backed up to {backup_file}")
            return OperationResult.ok(
                f"Backed up {len(snapshot)} plugin(s)",
                count=len(snapshot),
                backup_file=str(backup_file),
            )
        except Exception as e:
            logger.error(f"Plugin backup failed: {e}")
            return OperationResult.failure(e, "Plugin backup failed")
