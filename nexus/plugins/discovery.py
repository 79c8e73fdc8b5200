"""Plugin discovery - scans the plugins root for plugin folders."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from nexus.constants import DESCRIPTOR_FILE, RESERVED_DIR_NAMES, VIEW_FILES
from nexus.plugins.descriptor import PluginDescriptor
from nexus.plugins.errors import ConflictError, DescriptorParseError, PluginError
from nexus.plugins.validator import ValidationResult, validate_descriptor

logger = logging.getLogger(__name__)


@dataclass
class PluginCandidate:
    """A plugin folder and what was found in it."""

    folder: str
    path: Path
    data: Optional[Dict[str, Any]] = None
    validation: Optional[ValidationResult] = None
    has_view: bool = False
    error: Optional[PluginError] = None

    @property
    def valid(self) -> bool:
        return self.error is None and bool(self.validation)

    def to_descriptor(self) -> PluginDescriptor:
        return PluginDescriptor.model_validate(self.data)


class PluginDiscovery:
    """Discovers plugins by scanning a directory for plugin.json descriptors."""

    MANIFEST_FILE = DESCRIPTOR_FILE

    def __init__(self, plugins_dir: Path):
        self.plugins_dir = plugins_dir

    def list_directories(self) -> List[Path]:
        """Candidate plugin folders, sorted by name.

        Folders starting with '_' or '.' and reserved tooling folders are skipped.
        """
        if not self.plugins_dir.exists():
            logger.debug(f"Plugin search path does not exist: {self.plugins_dir}")
            return []

        folders = []
        for item in sorted(self.plugins_dir.iterdir()):
            if item.name.startswith(("_", ".")) or item.name in RESERVED_DIR_NAMES:
                continue
            if item.is_dir():
                folders.append(item)
        return folders

    def read_descriptor(self, plugin_dir: Path) -> Optional[Dict[str, Any]]:
        """Read plugin.json from a plugin folder.

        Returns:
            Parsed descriptor data, or None when the folder has no plugin.json

        Raises:
            DescriptorParseError: plugin.json is not valid JSON or not an object
        """
        manifest_file = plugin_dir / self.MANIFEST_FILE
        if not manifest_file.exists():
            return None

        try:
            with open(manifest_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DescriptorParseError(f"Invalid JSON in {manifest_file}: {e}") from e

        if not isinstance(data, dict):
            raise DescriptorParseError(f"{manifest_file} must contain a JSON object")
        return data

    def has_view(self, plugin_dir: Path) -> bool:
        return any((plugin_dir / name).is_file() for name in VIEW_FILES)

    def inspect(self, plugin_dir: Path) -> Optional[PluginCandidate]:
        """Read and validate one plugin folder without side effects.

        Returns:
            PluginCandidate, or None when the folder has no plugin.json
        """
        candidate = PluginCandidate(folder=plugin_dir.name, path=plugin_dir)
        try:
            candidate.data = self.read_descriptor(plugin_dir)
        except DescriptorParseError as e:
            candidate.error = e
            return candidate

        if candidate.data is None:
            return None

        candidate.validation = validate_descriptor(candidate.data)
        candidate.has_view = self.has_view(plugin_dir)
        return candidate

    def discover_all(self) -> List[PluginCandidate]:
        """Inspect every plugin folder (valid or not) under the plugins root."""
        candidates = []
        for plugin_dir in self.list_directories():
            candidate = self.inspect(plugin_dir)
            if candidate is not None:
                candidates.append(candidate)
        logger.info(f"Discovered {len(candidates)} plugin folder(s) in {self.plugins_dir}")
        return candidates

    def plugin_dir_for(self, descriptor: PluginDescriptor) -> Path:
        return self.plugins_dir / descriptor.slug

    def write_descriptor(self, descriptor: PluginDescriptor) -> Path:
        """Write descriptor to <plugins_dir>/<slug>/plugin.json.

        Returns:
            Path of the written plugin.json

        Raises:
            ConflictError: the folder already holds another plugin's plugin.json
        """
        plugin_dir = self.plugin_dir_for(descriptor)
        existing = self.read_descriptor(plugin_dir) if plugin_dir.is_dir() else None
        if existing is not None and existing.get("name") != descriptor.name:
            raise ConflictError(str(existing.get("name")), f"already owns folder {plugin_dir.name}")

        plugin_dir.mkdir(parents=True, exist_ok=True)
        manifest_file = plugin_dir / self.MANIFEST_FILE
        with open(manifest_file, "w", encoding="utf-8") as f:
            json.dump(descriptor.to_dict(), f, indent=2, ensure_ascii=False)
        logger.debug(f"Wrote {manifest_file}")
        return manifest_file
