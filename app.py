"""Main FastAPI application for NexusCore."""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env.prod
load_dotenv('.env.prod')

# Configure logging BEFORE importing any modules that use logger
log_level = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import after logging is configured
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from nexus.dependencies import get_plugin_manager
from nexus.plugins.routing import create_dispatch_router
from nexus.routers import plugins_router

# Create FastAPI app
app = FastAPI(
    title="NexusCore",
    description="Web platform with hot-installable feature plugins",
    version="3.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(plugins_router)  # /api/plugins endpoints


@app.get("/")
async def root():
    """Service summary."""
    manager = get_plugin_manager()
    return {
        "message": "NexusCore API",
        "docs": "/docs",
        "plugins": len(manager.registry.get_active()),
        "categories": manager.get_categories(),
    }


@app.get("/health")
async def health():
    """Liveness probe."""
    stats = get_plugin_manager().get_stats()
    return {"status": "ok", "plugins": {"total": stats["total"], "active": stats["active"]}}


# Plugin routes are resolved per request; must stay the last router
app.include_router(create_dispatch_router(lambda: get_plugin_manager().routes))


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info("Starting NexusCore")
    logger.info(f"Working directory: {Path.cwd()}")

    manager = get_plugin_manager()
    logger.info(f"Plugins directory: {manager.discovery.plugins_dir}")
    report = await manager.start()
    logger.info(f"Plugins loaded: {report.total} ({report.active} active, {report.errors} errors)")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event."""
    logger.info("Shutting down NexusCore")
    await get_plugin_manager().stop()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=True)
