"""
FastAPI server for the Ramadan goals API. run_api_server(app) blocks in uvicorn.
Per-plugin routes are mounted from ramadan_goals.plugins.<package>.api
(get_router(ramadan_app)) under /api/components/<package>/.
Docs: http://<host>:<port>/docs
"""
import importlib
import logging
import pkgutil
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI

logger = logging.getLogger(__name__)


def _mount_plugin_routers(app: FastAPI, ramadan_app: Any) -> List[str]:
    """Include every plugin router found; return the names that were mounted."""
    mounted = []
    try:
        plugins_pkg = importlib.import_module("ramadan_goals.plugins")
        for _mod, name, is_pkg in pkgutil.iter_modules(plugins_pkg.__path__):
            if not is_pkg:
                continue
            try:
                api_module = importlib.import_module(f"ramadan_goals.plugins.{name}.api")
            except ImportError:
                continue
            if not hasattr(api_module, "get_router") or not callable(api_module.get_router):
                continue
            try:
                router = api_module.get_router(ramadan_app)
                if router is not None:
                    app.include_router(router, prefix=f"/api/components/{name}")
                    mounted.append(name)
            except Exception as e:
                logger.warning(f"Failed to mount API router for plugin {name}: {e}", exc_info=True)
    except Exception as e:
        logger.warning(f"Plugin API discovery failed: {e}", exc_info=True)
    return mounted


def create_app(ramadan_app: Any) -> FastAPI:
    """Create FastAPI app bound to the given RamadanApp. Startup loads settings and resolves the window."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await ramadan_app.start()
        try:
            yield
        finally:
            await ramadan_app.stop()

    app = FastAPI(
        title="Ramadan Goals API",
        description="Ramadan window resolution and progress snapshots",
        lifespan=lifespan,
    )
    mounted = _mount_plugin_routers(app, ramadan_app)
    logger.info(f"Mounted plugin APIs: {mounted}")

    @app.get("/api/components")
    def list_components() -> List[Dict[str, Any]]:
        """List mounted plugin APIs."""
        return [{"name": name, "prefix": f"/api/components/{name}"} for name in mounted]

    return app


def run_api_server(ramadan_app: Any) -> None:
    """
    Serve the API in the foreground. Reads api.host (default 127.0.0.1) and
    api.port (default 8765) from config.
    """
    import uvicorn

    api_config = ramadan_app.config.data.get("api") or {}
    host = api_config.get("host") or "127.0.0.1"
    port = int(api_config.get("port") or 8765)
    fastapi_app = create_app(ramadan_app)
    logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
    uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
