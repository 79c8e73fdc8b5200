"""Dependency injection container for services."""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException

from nexus import constants
from nexus.plugins.store import PluginRecordStore

logger = logging.getLogger(__name__)

# ============================================================================
# Global service instances (Singleton pattern, but exposed via functions for easier testing/mocking)
# ============================================================================

_record_store_instance = None
_plugin_manager_instance = None


def get_record_store() -> PluginRecordStore:
    """Get plugin record store (singleton)."""
    global _record_store_instance
    if _record_store_instance is None:
        _record_store_instance = PluginRecordStore.from_url(constants.DATABASE_URL)
        logger.info(f"Created PluginRecordStore instance ({_record_store_instance.engine.url})")
    return _record_store_instance


def get_plugin_manager():
    """Get plugin manager (singleton)."""
    global _plugin_manager_instance
    if _plugin_manager_instance is None:
        from nexus.plugins.base import PluginProviders
        from nexus.plugins.builtin import register_builtin_plugins
        from nexus.plugins.manager import PluginManager

        providers = PluginProviders()
        register_builtin_plugins(providers)
        providers.load_entry_points()

        _plugin_manager_instance = PluginManager(
            plugins_dir=constants.PLUGINS_DIR,
            uploads_dir=constants.UPLOADS_DIR,
            store=get_record_store(),
            providers=providers,
        )
        logger.info("Created PluginManager instance")
    return _plugin_manager_instance


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """Authorization predicate for install/uninstall/update and admin data.

    Callers must send the X-Admin-Token header matching NEXUS_ADMIN_TOKEN.
    With no token configured the admin API is closed.
    """
    if not constants.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin API disabled: NEXUS_ADMIN_TOKEN is not set")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, constants.ADMIN_TOKEN):
        raise HTTPException(status_code=403, detail="Not authorized")


# Test utility function (for unit testing - resets all singletons)
def reset_services():
    """Reset all service instances (only for testing)."""
    global _record_store_instance, _plugin_manager_instance

    _record_store_instance = None
    _plugin_manager_instance = None
    logger.info("Reset all service instances")
