"""
Metasearch server entry point: TLS wiring.

Builds the TLS manager from the ``ssl`` config block, serves the API over
HTTPS when certificate material is available (plain HTTP otherwise), and
runs the background renewal work and the port-80 redirect listener.

Run: cd backend && python main.py
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI

from tls import (
    CertificateRenewalManager,
    HTTPSRedirectApp,
    Strategy,
    TLSManager,
    load_ssl_config,
    start_https_redirect,
)
from tls.routes import router as tls_router
from tls.settings import CONFIG_DIR, SERVER_CONFIG_FILE


logger = logging.getLogger(__name__)

HOST = os.environ.get("SEARCH_HOST", "0.0.0.0")
HTTP_PORT = int(os.environ.get("SEARCH_HTTP_PORT", "80"))
HTTPS_PORT = int(os.environ.get("SEARCH_HTTPS_PORT", "443"))
RENEWAL_INTERVAL = int(os.environ.get("SEARCH_TLS_RENEWAL_INTERVAL", str(12 * 3600)))


def set_log_level(level: Optional[str] = None) -> None:
    """Configure root logging from LOG_LEVEL (default INFO)."""
    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def build_tls_manager(config_path: Optional[Path] = None) -> TLSManager:
    """Load the ssl config and initialize a TLS manager for it."""
    ssl_config = load_ssl_config(config_path)
    manager = TLSManager(
        ssl_config,
        data_dir=CONFIG_DIR,
        secret_key=os.environ.get("SEARCH_SECRET_KEY") or None,
    )
    await manager.initialize()
    return manager


async def startup_event(app: FastAPI) -> None:
    """Initialize TLS (unless already done by serve()) and start background work."""
    app.state.secret_key = os.environ.get("SEARCH_SECRET_KEY") or None
    if not hasattr(app.state, "ssl_config_path"):
        app.state.ssl_config_path = SERVER_CONFIG_FILE
    if getattr(app.state, "tls_manager", None) is None:
        app.state.tls_manager = await build_tls_manager(app.state.ssl_config_path)
    manager: TLSManager = app.state.tls_manager

    await manager.start()

    renewal = CertificateRenewalManager(manager)
    renewal.start(check_interval=RENEWAL_INTERVAL)
    app.state.renewal_manager = renewal

    app.state.redirect_server = None
    if manager.is_enabled() and (manager.config.auto_tls or manager.strategy == Strategy.HTTP01):
        redirect_app = manager.get_https_handler(HTTPSRedirectApp(HTTPS_PORT))
        server, _ = start_https_redirect(HOST, HTTP_PORT, HTTPS_PORT, app=redirect_app)
        app.state.redirect_server = server

    logger.info("[MAIN] Startup complete (%r, enabled=%s)", manager, manager.is_enabled())


async def shutdown_event(app: FastAPI) -> None:
    """Stop background work."""
    renewal = getattr(app.state, "renewal_manager", None)
    if renewal is not None:
        await renewal.stop()

    manager = getattr(app.state, "tls_manager", None)
    if manager is not None:
        await manager.stop()

    server = getattr(app.state, "redirect_server", None)
    if server is not None:
        server.should_exit = True

    logger.info("[MAIN] Shutdown complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_event(app)
    try:
        yield
    finally:
        await shutdown_event(app)


app = FastAPI(title="Metasearch", lifespan=lifespan)
app.include_router(tls_router)


@app.get("/api/health")
async def health_check():
    """Liveness check."""
    manager: Optional[TLSManager] = getattr(app.state, "tls_manager", None)
    return {
        "status": "healthy",
        "tls": manager.is_enabled() if manager else False,
    }


async def serve() -> None:
    """
    Run the server.

    HTTPS on SEARCH_HTTPS_PORT when TLS material is loaded, otherwise
    plain HTTP on SEARCH_HTTP_PORT.
    """
    set_log_level()
    app.state.ssl_config_path = SERVER_CONFIG_FILE
    manager = await build_tls_manager(SERVER_CONFIG_FILE)
    app.state.tls_manager = manager

    handler = manager.get_https_handler(app)
    if manager.is_enabled():
        config = uvicorn.Config(handler, host=HOST, port=HTTPS_PORT, proxy_headers=True)
        config.load()
        # Replace uvicorn's file-based context with one that follows certificate swaps
        config.ssl = manager.create_ssl_context()
        logger.info("[MAIN] Serving HTTPS on %s:%s", HOST, HTTPS_PORT)
    else:
        config = uvicorn.Config(handler, host=HOST, port=HTTP_PORT, proxy_headers=True)
        logger.info("[MAIN] TLS not available, serving plain HTTP on %s:%s", HOST, HTTP_PORT)

    await uvicorn.Server(config).serve()


if __name__ == "__main__":
    asyncio.run(serve())
