"""Global constants for the NexusCore service."""

import os
from pathlib import Path

# Directory paths
NEXUS_ROOT = Path(__file__).resolve().parent.parent


def _resolve_path(env_name: str, default: Path) -> Path:
    """Read a path from the environment, resolving relative paths against NEXUS_ROOT."""
    value = os.getenv(env_name, "")
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else (NEXUS_ROOT / path).resolve()


DATA_DIR = _resolve_path("NEXUS_DATA_DIR", NEXUS_ROOT / "data")
PLUGINS_DIR = _resolve_path("NEXUS_PLUGINS_DIR", NEXUS_ROOT / "plugins")  # one folder per plugin
UPLOADS_DIR = _resolve_path("NEXUS_UPLOADS_DIR", NEXUS_ROOT / "uploads" / "plugins")

DATABASE_URL = os.getenv("NEXUS_DATABASE_URL", f"sqlite:///{DATA_DIR / 'nexuscore.db'}")

# Token expected in the X-Admin-Token header for admin operations (empty = admin API disabled)
ADMIN_TOKEN = os.getenv("NEXUS_ADMIN_TOKEN", "")

# Plugin directory layout
DESCRIPTOR_FILE = "plugin.json"
VIEW_FILES = ("view.html", "view.jinja2", "view.ejs")
RESERVED_DIR_NAMES = frozenset({"node_modules", "__pycache__", "site-packages", "build", "dist"})

# Health monitor: sweep interval (seconds) and error count above which a plugin is unhealthy
HEALTH_CHECK_INTERVAL = int(os.getenv("PLUGIN_HEALTH_INTERVAL", "300"))
HEALTH_ERROR_THRESHOLD = int(os.getenv("PLUGIN_HEALTH_ERROR_THRESHOLD", "10"))

# Max number of featured plugins surfaced in listings
FEATURED_LIMIT = int(os.getenv("PLUGIN_FEATURED_LIMIT", "6"))

# Per-subscriber event queue size and number of events kept for late readers
EVENT_QUEUE_SIZE = int(os.getenv("PLUGIN_EVENT_QUEUE_SIZE", "100"))

# Entry-point group scanned for PluginImplementation factories
PLUGIN_ENTRY_POINT_GROUP = "nexuscore.plugins"
