"""tenantpbx application entry point.

One asyncio process serves both sides:
  - FastAGI server: per-call authorization sessions from Asterisk
  - HTTP API: tenant/extension provisioning, health, metrics
"""

import asyncio
import logging
import signal
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tenantpbx import __version__
from tenantpbx.api.tenants import router as tenants_router
from tenantpbx.api.tenants import set_engine
from tenantpbx.config import Settings, get_settings
from tenantpbx.core.fast_agi import AGIConnection, AGIServer
from tenantpbx.core.call_session import CallSessionHandler
from tenantpbx.logging.structured_logger import setup_logging
from tenantpbx.monitoring.metrics import get_metrics
from tenantpbx.telephony.authorization import CallAuthorizationService

logger = logging.getLogger(__name__)

app = FastAPI(
    title="tenantpbx",
    description="Multi-tenant call authorization and provisioning for Asterisk",
    version=__version__,
)
app.include_router(tenants_router)

# Module-level references for health checks and shared components
_agi_server: AGIServer | None = None
_db_engine: AsyncEngine | None = None
_authorizer: CallAuthorizationService | None = None


@app.get("/health")
async def health_check() -> dict[str, object]:
    """Health check endpoint."""
    db_ok = False
    if _db_engine is not None:
        try:
            async with _db_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            db_ok = True
        except Exception:
            logger.warning("Database health check failed", exc_info=True)

    return {
        "status": "ok",
        "active_sessions": _agi_server.active_sessions if _agi_server else 0,
        "database": "connected" if db_ok else "disconnected",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type="text/plain; charset=utf-8")


async def handle_session(conn: AGIConnection) -> None:
    """Handle a single FastAGI authorization request from the dialplan."""
    assert _authorizer is not None, "Authorizer must be initialized before handling calls"
    settings = get_settings()
    handler = CallSessionHandler(
        conn,
        _authorizer,
        variables_timeout=settings.agi.variables_timeout,
    )
    await handler.run()


async def start_api_server(settings: Settings) -> None:
    """Start the FastAPI server for provisioning, health checks and metrics."""
    config = uvicorn.Config(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main() -> None:
    """Main application entry point."""
    global _agi_server, _db_engine, _authorizer

    settings = get_settings()

    validation = settings.validate_required()
    if not validation.ok:
        for err in validation.errors:
            hint = f" Hint: {err.hint}" if err.hint else ""
            print(f"❌ {err.field}: {err.message}.{hint}")
        print(f"\n{len(validation.errors)} configuration error(s). Fix them and restart.")
        sys.exit(1)

    setup_logging(level=settings.logging.level, format_type=settings.logging.format)

    logger.info("Starting tenantpbx v%s", __version__)

    _db_engine = create_async_engine(
        settings.database.url,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_pre_ping=True,
    )
    set_engine(_db_engine)
    logger.info("Database engine created: %s", settings.database.url.split("@")[-1])

    _authorizer = CallAuthorizationService(_db_engine)

    _agi_server = AGIServer(
        host=settings.agi.host,
        port=settings.agi.port,
        on_connection=handle_session,
    )
    await _agi_server.start()

    # Graceful shutdown
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    api_task = asyncio.create_task(start_api_server(settings))

    logger.info(
        "tenantpbx started (FastAGI:%d, API:%d)",
        settings.agi.port,
        settings.api.port,
    )

    await stop_event.wait()

    logger.info("Shutting down...")
    await _agi_server.stop()
    api_task.cancel()

    await _db_engine.dispose()
    logger.info("Database engine disposed")

    logger.info("tenantpbx stopped")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
