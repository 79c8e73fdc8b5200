"""Plugin management REST API endpoints."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from nexus.dependencies import get_plugin_manager, require_admin
from nexus.models.requests import PluginUpdateRequest
from nexus.plugins.errors import OperationResult, PluginErrorKind, ReloadInProgressError
from nexus.plugins.lifecycle import UploadedArtifact
from nexus.plugins.manager import PluginManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins", tags=["plugins"])

_STATUS_BY_ERROR = {
    PluginErrorKind.INVALID_CONFIG: 400,
    PluginErrorKind.PARSE_FAILURE: 400,
    PluginErrorKind.CONFLICT: 409,
    PluginErrorKind.NOT_FOUND: 404,
}


def _result_response(result: OperationResult, success_status: int = 200) -> JSONResponse:
    """Translate an OperationResult into an HTTP response."""
    status_code = success_status if result.success else _STATUS_BY_ERROR.get(result.error, 500)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.get("/")
async def list_plugins(
    category: Optional[str] = Query(None, description="Only plugins in this category"),
    q: Optional[str] = Query(None, description="Search name, description and tags"),
    manager: PluginManager = Depends(get_plugin_manager),
):
    """List active plugins, optionally filtered."""
    return {"plugins": manager.list_plugins(category=category, query=q)}


@router.get("/categories")
async def list_categories(manager: PluginManager = Depends(get_plugin_manager)):
    return {"categories": manager.get_categories()}


@router.get("/featured")
async def list_featured(manager: PluginManager = Depends(get_plugin_manager)):
    return {"plugins": manager.get_featured()}


@router.get("/stats", dependencies=[Depends(require_admin)])
async def plugin_stats(manager: PluginManager = Depends(get_plugin_manager)):
    """Load statistics of the plugin system."""
    return manager.get_stats()


@router.get("/health", dependencies=[Depends(require_admin)])
async def plugin_health(manager: PluginManager = Depends(get_plugin_manager)):
    """Run a health check now and return the report."""
    return manager.check_plugin_health().to_dict()


@router.post("/install", dependencies=[Depends(require_admin)])
async def install_plugin(
    descriptor: str = Form(..., description="plugin.json content"),
    file: Optional[UploadFile] = File(None, description="Optional plugin archive"),
    manager: PluginManager = Depends(get_plugin_manager),
):
    """Install a plugin from an uploaded descriptor (and optional archive)."""
    try:
        descriptor_data = json.loads(descriptor)
    except json.JSONDecodeError as e:
        return _result_response(
            OperationResult(
                success=False,
                error=PluginErrorKind.PARSE_FAILURE,
                message=f"Descriptor is not valid JSON: {e}",
            )
        )

    upload = None
    if file is not None:
        upload = UploadedArtifact(filename=file.filename or "plugin.zip", content=await file.read())

    result = await manager.install_plugin(descriptor_data, upload)
    return _result_response(result, success_status=201)


@router.post("/reload", dependencies=[Depends(require_admin)])
async def reload_plugins(manager: PluginManager = Depends(get_plugin_manager)):
    """Reload every plugin from the store and the plugins folder."""
    try:
        report = await manager.load_all()
    except ReloadInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return report.to_dict()


@router.post("/backup", dependencies=[Depends(require_admin)])
async def backup_plugins(manager: PluginManager = Depends(get_plugin_manager)):
    return _result_response(await manager.backup())


@router.get("/{name}")
async def get_plugin(name: str, manager: PluginManager = Depends(get_plugin_manager)):
    """Get detailed information about a specific plugin."""
    info = manager.get_plugin_info(name)
    if not info:
        raise HTTPException(status_code=404, detail=f"Plugin '{name}' not found")
    return info


@router.put("/{name}", dependencies=[Depends(require_admin)])
async def update_plugin(
    name: str,
    body: PluginUpdateRequest,
    manager: PluginManager = Depends(get_plugin_manager),
):
    """Apply a partial update to a plugin."""
    return _result_response(await manager.update_plugin(name, body.changes))


@router.delete("/{name}", dependencies=[Depends(require_admin)])
async def uninstall_plugin(name: str, manager: PluginManager = Depends(get_plugin_manager)):
    """Uninstall a plugin. Its route stops resolving on the next request."""
    return _result_response(await manager.uninstall_plugin(name))
