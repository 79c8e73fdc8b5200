"""Plugin routing - route binding and request dispatch by live registry lookup.

Routes are not mounted on the FastAPI router per plugin. A single catch-all
route resolves the target plugin in the registry on every request, so an
uninstalled plugin stops being reachable immediately.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from nexus.plugins.base import plugin_logger
from nexus.plugins.cache import PluginCache
from nexus.plugins.descriptor import PluginDescriptor
from nexus.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

PluginHandler = Callable[[Request, PluginDescriptor], Union[Any, Awaitable[Any]]]

DISPATCH_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class PluginRouteTable:
    """The web layer's route registration capability handed to plugins."""

    def __init__(self, registry: PluginRegistry, cache: PluginCache):
        self.registry = registry
        self.cache = cache
        self._handlers: Dict[str, PluginHandler] = {}

    def register_route(self, descriptor: PluginDescriptor, handler: PluginHandler) -> None:
        """Bind handler to descriptor.route. Each identity key is bound once per process."""
        if descriptor.key in self._handlers:
            logger.debug(f"Route for '{descriptor.key}' already bound, keeping existing handler")
            return
        self._handlers[descriptor.key] = handler
        logger.info(f"Bound route '{descriptor.route}' for plugin '{descriptor.key}'")

    def is_bound(self, key: str) -> bool:
        return key in self._handlers

    def get_handler(self, key: str) -> Optional[PluginHandler]:
        return self._handlers.get(key)

    def rebind(self, old_key: str, new_key: str) -> None:
        """Carry a binding over to a new identity key (version change)."""
        handler = self._handlers.pop(old_key, None)
        if handler is not None:
            self._handlers[new_key] = handler

    async def dispatch(self, request: Request) -> Response:
        """Serve a request with the active plugin owning its path."""
        descriptor = self.registry.match_route(request.url.path)
        if descriptor is None:
            return JSONResponse(status_code=404, content={"detail": "Not Found"})

        handler = self._handlers.get(descriptor.key)
        if handler is None:
            return JSONResponse(
                status_code=404,
                content={"detail": f"Plugin '{descriptor.name}' has no route handler"},
            )

        key = descriptor.key
        self.cache.record_request(key)
        try:
            result = handler(request, descriptor)
            if inspect.isawaitable(result):
                result = await result
        except HTTPException as e:
            if e.status_code >= 500:
                self.cache.record_error(key)
            raise
        except Exception:
            self.cache.record_error(key)
            plugin_logger(descriptor).exception(f"Failed handling {request.method} {request.url.path}")
            return JSONResponse(
                status_code=500,
                content={"detail": f"Plugin '{descriptor.name}' failed to handle the request"},
            )

        response = result if isinstance(result, Response) else JSONResponse(content=jsonable_encoder(result))
        if response.status_code >= 500:
            self.cache.record_error(key)
        return response


def create_dispatch_router(get_routes: Callable[[], PluginRouteTable]) -> APIRouter:
    """Catch-all router; include it after every other router of the app.

    Args:
        get_routes: Returns the route table, resolved on each request
    """
    router = APIRouter(tags=["plugin-dispatch"])

    @router.api_route("/{path:path}", methods=DISPATCH_METHODS, include_in_schema=False)
    async def dispatch_to_plugin(request: Request):
        return await get_routes().dispatch(request)

    return router
