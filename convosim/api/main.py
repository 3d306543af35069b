"""FastAPI application for the ConvoSim API.

Provides the main application instance with the simulation router, the
ConvoSimError exception handler and a health endpoint. The lifespan
creates the schema, builds the SimulationService and fails any job a
previous process left unfinished.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("convosim").setLevel(logging.INFO)
from fastapi.responses import JSONResponse

from convosim.api.routes import simulations
from convosim.cli.config import load_config
from convosim.cli.factory import build_client, build_service
from convosim.db.connection import AsyncSessionLocal, async_init_db, close_async_db
from convosim.errors import ConvoSimError, ErrorCategory, get_error, sanitize_error_message
from convosim.services.errors import StoreError
from convosim.utils.paths import ensure_dirs_exist

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: schema, service wiring and startup recovery."""
    global _startup_time

    # --- Startup ---
    _startup_time = _time.time()
    config = load_config(os.environ.get("CONVOSIM_CONFIG_PATH") or None)
    ensure_dirs_exist()
    await async_init_db()

    client = build_client(config)
    service = build_service(config, AsyncSessionLocal, client)
    app.state.simulation_service = service

    # Recovery failures are logged, not propagated
    try:
        await service.store.recover_interrupted()
    except StoreError as e:
        logger.error("Startup recovery failed (non-blocking): %s", e)

    yield

    # --- Shutdown ---
    await service.shutdown()
    await client.aclose()
    await close_async_db()


app = FastAPI(
    title="ConvoSim API",
    description="Bulk conversation simulation against Dialogflow CX agents",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ConvoSimError)
async def convosim_error_handler(request: Request, exc: ConvoSimError) -> JSONResponse:
    """Handle ConvoSimError exceptions with consistent format.

    Input errors map to 400; everything else is a 500 with a sanitised
    message.

    Args:
        request: The incoming request.
        exc: The ConvoSimError exception.

    Returns:
        JSONResponse with error details.
    """
    error_def = get_error(exc.code)
    if error_def is not None and error_def.category == ErrorCategory.DATA:
        status_code = 400
    else:
        status_code = 500
        logger.error("Request failed with %s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": sanitize_error_message(exc.message),
            "code": exc.code,
            "remediation": exc.remediation,
        },
    )


# Include routers
app.include_router(simulations.router, prefix="/api/v1")


@app.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint with version, uptime and live job count."""
    uptime = int(_time.time() - _startup_time) if _startup_time else 0

    try:
        version = _pkg_version("convosim")
    except Exception:
        version = "unknown"

    service = getattr(request.app.state, "simulation_service", None)
    active_jobs = len(service.store.live) if service is not None else 0

    return {
        "status": "ok",
        "version": version,
        "uptime_seconds": uptime,
        "active_jobs": active_jobs,
    }
