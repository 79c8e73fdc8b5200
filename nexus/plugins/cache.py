"""Per-plugin runtime bookkeeping (load time, request and error counters)."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PluginCacheEntry:
    """Runtime statistics for one plugin, keyed by name@version."""

    key: str
    path: Optional[Path] = None
    loaded_at: datetime = field(default_factory=_now)
    requests: int = 0
    errors: int = 0
    last_used: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "path": str(self.path) if self.path else None,
            "loaded_at": self.loaded_at.isoformat(),
            "requests": self.requests,
            "errors": self.errors,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


class PluginCache:
    """Map of identity key -> PluginCacheEntry.

    Entries are created by the loader and mutated by the request dispatcher.
    """

    def __init__(self):
        self._entries: Dict[str, PluginCacheEntry] = {}

    def create(self, key: str, path: Optional[Path] = None) -> PluginCacheEntry:
        entry = PluginCacheEntry(key=key, path=path)
        self._entries[key] = entry
        return entry

    def get(self, key: str) -> Optional[PluginCacheEntry]:
        return self._entries.get(key)

    def remove(self, key: str) -> Optional[PluginCacheEntry]:
        return self._entries.pop(key, None)

    def rekey(self, old_key: str, new_key: str) -> None:
        """Move an entry to a new key (e.g. after a version bump)."""
        entry = self._entries.pop(old_key, None)
        if entry is not None:
            entry.key = new_key
            self._entries[new_key] = entry

    def clear(self) -> None:
        self._entries.clear()

    def record_request(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"No cache entry for {key}, request not counted")
            return
        entry.requests += 1
        entry.last_used = _now()

    def record_error(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"No cache entry for {key}, error not counted")
            return
        entry.errors += 1

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
