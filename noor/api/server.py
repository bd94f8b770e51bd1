"""
FastAPI server for the Noor API. Run with run_api_server(app) in a background thread.
Central endpoints: GET /api/status, GET /api/components, GET /api/tasks. Per-plugin routes are mounted
from noor.plugins.<package>.api (get_router(noor_app)) under /api/components/<package>/.
Docs when enabled: http://<host>:<port>/docs
"""
import importlib
import logging
import pkgutil
import threading
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from noor import __version__
from noor.core.errors import NoorError, StorageUnavailable, TimeSourceUnavailable

logger = logging.getLogger(__name__)

# Keys to exclude from component config in API (secrets)
_CONFIG_SECRET_KEYS = frozenset(
    {"api_key", "password", "token", "secret", "credentials", "client_secret"}
)


def _safe_component_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return config with secret keys omitted."""
    if not config:
        return {}
    return {k: v for k, v in config.items() if k.lower() not in _CONFIG_SECRET_KEYS}


def _serialize_datetime(value: Any) -> Optional[str]:
    """Serialize a datetime (or stored ISO string) to an ISO string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def _error_status(error: NoorError) -> int:
    if isinstance(error, (TimeSourceUnavailable, StorageUnavailable)) or error.retryable:
        return 503
    return 500


def create_app(noor_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given NoorApp instance."""
    app = FastAPI(title="Noor API", description="Prayer times, notifications, Quran cache and Qiblah")

    @app.exception_handler(NoorError)
    async def noor_error_handler(request: Request, exc: NoorError) -> JSONResponse:
        status = _error_status(exc)
        logger.warning(f"{request.method} {request.url.path} failed with {exc.__class__.__name__}: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc), "retryable": exc.retryable})

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        """Whether the local store is usable (otherwise network-only) and where the dispatcher is."""
        store = noor_app.store
        dispatcher = noor_app.dispatcher
        return {
            "version": __version__,
            "store_open": store.is_open,
            "schema_version": store.schema_version(),
            "collections": store.collections(),
            "dispatcher_state": dispatcher.state,
            "audio_unlocked": dispatcher.audio_unlocked,
        }

    @app.get("/api/components")
    def list_components() -> List[Dict[str, Any]]:
        """List configured components with enabled state and safe config."""
        components_data = []
        comp_config = noor_app.config.data.get("components") or {}
        for name, config in comp_config.items():
            enabled = True
            if isinstance(config, dict):
                enabled = config.get("enable", True)
            safe_config = _safe_component_config(config) if isinstance(config, dict) else {}
            components_data.append({
                "name": name,
                "enabled": enabled,
                "config": safe_config,
            })
        return components_data

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List scheduled tasks: stored schedules and active in-memory timers."""
        from noor.core.task import get_all_task_schedules

        db_schedules = get_all_task_schedules(noor_app.store)
        for row in db_schedules:
            row["next_run_at"] = _serialize_datetime(row.get("next_run_at"))
            row["last_run_at"] = _serialize_datetime(row.get("last_run_at"))

        active_timers = noor_app.task_manager.get_active_timers()
        active_list = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in active_timers
        ]

        return {"db_schedules": db_schedules, "active_timers": active_list}

    @app.get("/api/schedules")
    def list_schedules() -> Dict[str, Any]:
        """Alias for /api/tasks."""
        return list_tasks()

    # Mount per-plugin API routers from noor.plugins.<name>.api (get_router(noor_app))
    try:
        plugins_pkg = importlib.import_module("noor.plugins")
        for _mod, name, is_pkg in pkgutil.iter_modules(plugins_pkg.__path__):
            if not is_pkg:
                continue
            try:
                api_module = importlib.import_module(f"noor.plugins.{name}.api")
            except ImportError:
                continue
            if not hasattr(api_module, "get_router") or not callable(api_module.get_router):
                continue
            try:
                router = api_module.get_router(noor_app)
                if router is not None:
                    app.include_router(router, prefix=f"/api/components/{name}")
            except Exception as e:
                logger.warning(f"Failed to mount API router for plugin {name}: {e}", exc_info=True)
    except Exception as e:
        logger.warning(f"Plugin API discovery failed: {e}", exc_info=True)

    return app


def run_api_server(noor_app: Any) -> Optional[threading.Thread]:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = noor_app.config.data.get("api") or {}
    enabled = api_config.get("enabled", False)
    config_file = getattr(noor_app.config, "config_file", None)
    logger.info(
        f"API config: enabled={enabled}, config_file={config_file}, api section={list(api_config.keys())}"
    )
    if not enabled:
        logger.info(
            "API server not started: set api.enabled to true in your config file to enable."
        )
        return None
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(noor_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
    return thread
