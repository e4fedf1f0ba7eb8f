"""
Load Generation Controller - FastAPI Server

This is the main entry point for the controller's HTTP admin surface.
On startup it builds the in-memory host and the controller, reloads the
configured generator list from the store, and starts the periodic
reconciliation worker.

Design Principles:
- Graceful startup/shutdown (every generator is stopped abruptly on exit)
- Configuration mutations are persisted immediately
- Errors map to HTTP status codes by category
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from loadgen.observability.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    set_request_id,
)
from loadgen.runtime.controller import GeneratorController, LoadMaintainer
from loadgen.runtime.errors import (
    ConfigurationError,
    ErrorCode,
    HostError,
    LoadGeneratorError,
)
from loadgen.runtime.local_host import InMemoryHost
from loadgen.runtime.store import GeneratorStore
from loadgen.server import dependencies
from loadgen.server.config import get_config
from loadgen.server.routes import generators, health, metrics

logger = get_logger(__name__)

_NOT_FOUND_CODES = {ErrorCode.GEN_UNKNOWN_ID, ErrorCode.GEN_UNKNOWN_SHORT_NAME}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager - handles startup and shutdown."""
    config = get_config()

    configure_logging(
        level=config.log_level,
        format=config.log_format,
        redact_fields=config.redact_log_fields
    )

    logger.info("Load generation controller starting...", extra={
        "env": config.env,
        "version": "1.0.0",
        "recurrence_period_ms": config.recurrence_period_ms,
    })

    host = InMemoryHost(
        executors=config.local_host_executors,
        enforce_privileges=config.enforce_privileges,
        poll_interval_ms=config.local_host_poll_interval_ms,
    )
    controller = GeneratorController(host)
    controller.attach()

    store = GeneratorStore(config.root_dir, config.store_filename)

    try:
        loaded = store.load()
        controller.sync(loaded)
        if config.autostart:
            for generator in loaded:
                controller.start(generator)
        logger.info("Generators loaded", extra={
            "generator_count": len(loaded),
            "autostart": config.autostart,
        })
    except LoadGeneratorError as e:
        logger.error("Failed to load generator store, starting empty", extra=e.to_log_dict())

    maintainer = LoadMaintainer(controller, recurrence_period_ms=config.recurrence_period_ms)

    dependencies.set_host(host)
    dependencies.set_controller(controller)
    dependencies.set_maintainer(maintainer)
    dependencies.set_store(store)

    host.start()
    maintainer.start()

    app.state.config = config

    yield  # Server runs

    # ==========================================================================
    # Graceful Shutdown
    # ==========================================================================

    logger.info("Controller shutting down...")
    shutdown_start = asyncio.get_event_loop().time()
    timeout = float(config.graceful_shutdown_timeout_seconds)

    # Step 1: No more ticks
    try:
        maintainer.stop(timeout=timeout)
    except Exception as e:
        logger.error(f"Error stopping load maintainer: {e}")

    # Step 2: Leave nothing queued or running behind
    try:
        controller.stop_all_abruptly()
    except Exception as e:
        logger.error(f"Error stopping generators: {e}")

    # Step 3: Stop the host dispatcher
    try:
        host.stop(timeout=timeout)
    except Exception as e:
        logger.error(f"Error stopping host: {e}")

    dependencies.clear_all()

    shutdown_duration = asyncio.get_event_loop().time() - shutdown_start
    logger.info(f"Shutdown complete in {shutdown_duration:.2f}s")


# Create FastAPI app
app = FastAPI(
    title="Load Generation Controller",
    version="1.0.0",
    description="Synthetic load generation for a job-execution host",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Add request ID to context and response headers."""
    config = get_config()

    request_id = request.headers.get(config.request_id_header, str(uuid.uuid4()))
    set_request_id(request_id)

    try:
        response = await call_next(request)
        response.headers[config.request_id_header] = request_id
        return response
    finally:
        clear_request_id()


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(generators.router, prefix="/generators", tags=["generators"])
app.include_router(metrics.router, prefix="/metrics", tags=["metrics"])


@app.exception_handler(LoadGeneratorError)
async def load_generator_exception_handler(request: Request, exc: LoadGeneratorError):
    """Map controller errors to HTTP status codes."""
    if exc.code in _NOT_FOUND_CODES:
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, HostError):
        status_code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, ConfigurationError) and exc.code is ErrorCode.CFG_STORE_WRITE_FAILED:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    logger.warning("Request failed", extra=exc.to_log_dict())
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors gracefully."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raised ValueError itself
    return [
        {key: (str(value) if key == "ctx" else value) for key, value in error.items()}
        for error in exc.errors()
    ]


@app.get("/", tags=["root"])
async def root():
    """Root endpoint - basic service information."""
    return {
        "service": "Load Generation Controller",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "generators": "/generators",
            "metrics": "/metrics",
            "docs": "/docs",
        }
    }


def run() -> None:
    """Console entry point."""
    config = get_config()
    uvicorn.run(
        "loadgen.server.main:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        access_log=True,
        reload=False,
        timeout_graceful_shutdown=config.graceful_shutdown_timeout_seconds,
    )


if __name__ == "__main__":
    run()
