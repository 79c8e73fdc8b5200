"""Plugin registry - in-memory map of registered plugins keyed by name@version."""

import logging
from enum import Enum
from typing import Dict, List, Optional

from nexus.constants import FEATURED_LIMIT
from nexus.plugins.descriptor import PluginDescriptor

logger = logging.getLogger(__name__)


class PluginState(str, Enum):
    """Plugin lifecycle states."""

    DISCOVERED = "discovered"
    VALIDATED = "validated"
    REGISTERED = "registered"
    DEACTIVATED = "deactivated"
    REMOVED = "removed"


class PluginRegistry:
    """Central registry for all registered plugins.

    One instance per process, handed to the loader, lifecycle manager,
    health monitor and dispatcher. The first descriptor registered under an
    identity key wins; later registrations of the same key are no-ops.
    """

    def __init__(self, featured_limit: int = FEATURED_LIMIT):
        self._plugins: Dict[str, PluginDescriptor] = {}
        self.featured_limit = featured_limit

    def register(self, descriptor: PluginDescriptor) -> bool:
        """Register a descriptor under its identity key.

        Returns:
            True if added, False if the key was already registered
        """
        if descriptor.key in self._plugins:
            logger.debug(f"Plugin '{descriptor.key}' already registered, keeping first")
            return False
        self._plugins[descriptor.key] = descriptor
        logger.debug(f"Registered plugin: {descriptor.key}")
        return True

    def replace(self, old_key: str, descriptor: PluginDescriptor) -> None:
        """Swap the entry at old_key for descriptor (which may carry a new key)."""
        self._plugins.pop(old_key, None)
        self._plugins[descriptor.key] = descriptor

    def get(self, key: str) -> Optional[PluginDescriptor]:
        return self._plugins.get(key)

    def has(self, key: str) -> bool:
        return key in self._plugins

    def remove(self, key: str) -> Optional[PluginDescriptor]:
        return self._plugins.pop(key, None)

    def clear(self) -> None:
        self._plugins.clear()

    def get_all(self) -> List[PluginDescriptor]:
        return list(self._plugins.values())

    def get_active(self) -> List[PluginDescriptor]:
        return [p for p in self._plugins.values() if p.active]

    def count(self) -> int:
        return len(self._plugins)

    def keys(self) -> List[str]:
        return list(self._plugins)

    def snapshot(self) -> List[dict]:
        """Serializable copy of every registered descriptor."""
        return [p.to_dict() for p in self._plugins.values()]

    # Query surface

    def by_name(self, name: str) -> Optional[PluginDescriptor]:
        return next((p for p in self._plugins.values() if p.name == name), None)

    def by_route(self, route: str) -> Optional[PluginDescriptor]:
        return next((p for p in self._plugins.values() if p.route == route), None)

    def by_category(self, category: str) -> List[PluginDescriptor]:
        return [p for p in self._plugins.values() if p.category == category and p.active]

    def search(self, query: str) -> List[PluginDescriptor]:
        """Case-insensitive substring match over name, description and tags."""
        q = query.lower()
        return [
            p
            for p in self._plugins.values()
            if p.active
            and (
                q in p.name.lower()
                or q in p.description.lower()
                or any(q in tag.lower() for tag in p.tags)
            )
        ]

    def categories(self) -> List[str]:
        seen: Dict[str, None] = {}
        for p in self._plugins.values():
            if p.category:
                seen.setdefault(p.category, None)
        return list(seen)

    def featured(self) -> List[PluginDescriptor]:
        return [p for p in self._plugins.values() if p.featured and p.active][: self.featured_limit]

    def match_route(self, path: str) -> Optional[PluginDescriptor]:
        """Active plugin whose route is the longest prefix of path."""
        best: Optional[PluginDescriptor] = None
        for p in self._plugins.values():
            if not p.active:
                continue
            if path == p.route or path.startswith(p.route + "/"):
                if best is None or len(p.route) > len(best.route):
                    best = p
        return best
