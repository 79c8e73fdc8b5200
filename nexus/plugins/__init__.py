"""Plugin system for NexusCore.

Imports are lazy so lightweight components (PluginDescriptor,
validate_descriptor, PluginDiscovery) can be used without pulling in
SQLAlchemy or FastAPI.
"""

__all__ = [
    "PluginDescriptor",
    "validate_descriptor",
    "PluginRegistry",
    "PluginState",
    "PluginCache",
    "PluginDiscovery",
    "PluginRecordStore",
    "PluginLoader",
    "PluginLifecycleManager",
    "PluginHealthMonitor",
    "PluginEventChannel",
    "PluginEventType",
    "PluginImplementation",
    "PluginProviders",
    "PluginRouteTable",
    "PluginManager",
    "OperationResult",
    "PluginErrorKind",
]


def __getattr__(name):
    if name == "PluginDescriptor":
        from nexus.plugins.descriptor import PluginDescriptor
        return PluginDescriptor
    if name == "validate_descriptor":
        from nexus.plugins.validator import validate_descriptor
        return validate_descriptor
    if name in ("PluginRegistry", "PluginState"):
        from nexus.plugins import registry
        return getattr(registry, name)
    if name == "PluginCache":
        from nexus.plugins.cache import PluginCache
        return PluginCache
    if name == "PluginDiscovery":
        from nexus.plugins.discovery import PluginDiscovery
        return PluginDiscovery
    if name == "PluginRecordStore":
        from nexus.plugins.store import PluginRecordStore
        return PluginRecordStore
    if name == "PluginLoader":
        from nexus.plugins.loader import PluginLoader
        return PluginLoader
    if name == "PluginLifecycleManager":
        from nexus.plugins.lifecycle import PluginLifecycleManager
        return PluginLifecycleManager
    if name == "PluginHealthMonitor":
        from nexus.plugins.health import PluginHealthMonitor
        return PluginHealthMonitor
    if name in ("PluginEventChannel", "PluginEventType"):
        from nexus.plugins import events
        return getattr(events, name)
    if name in ("PluginImplementation", "PluginProviders"):
        from nexus.plugins import base
        return getattr(base, name)
    if name == "PluginRouteTable":
        from nexus.plugins.routing import PluginRouteTable
        return PluginRouteTable
    if name == "PluginManager":
        from nexus.plugins.manager import PluginManager
        return PluginManager
    if name in ("OperationResult", "PluginErrorKind"):
        from nexus.plugins import errors
        return getattr(errors, name)
    raise AttributeError(f"module 'nexus.plugins' has no attribute {name!r}")
