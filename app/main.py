import os
import subprocess
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.logger import app_logger, log_request_start, log_request_end, log_request_error
from app.config.settings import settings
from app.db.db import close_db, create_store
from app.services.coordinator import AccessCoordinator
from app.services.scheduler import SweepScheduler
from app.utils.errors import ConflictError, CoordinatorError
from app.utils.responses import error_response
from app.api.auth.router import router as auth_router
from app.api.requests.router import router as requests_router
from app.api.sessions.router import router as sessions_router
from app.api.audit.router import router as audit_router
from app.api.devices.router import router as devices_router
from app.api.notifications.router import router as notifications_router


_git_sha_cache: Optional[str] = None


def get_git_sha() -> str:
    """Get the current Git commit SHA (cached to avoid blocking)."""
    global _git_sha_cache
    if _git_sha_cache is not None:
        return _git_sha_cache

    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            timeout=1.0
        )
        _git_sha_cache = result.stdout.strip()[:8]
        return _git_sha_cache
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired):
        _git_sha_cache = "local-dev"
        return _git_sha_cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager for startup and shutdown events."""
    # Startup
    app_logger.info(f"{settings.APP_NAME} API starting up")
    app_logger.info(f"Logging system active - logs will be saved to {settings.LOG_DIR}/ directory")

    store = await create_store(settings)
    coordinator = AccessCoordinator(store, settings)
    app.state.coordinator = coordinator

    is_ok, message = await store.ping()
    if is_ok:
        app_logger.info(f"Store connection: {message}")
    else:
        app_logger.warning(f"Store connection issue: {message}")

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = SweepScheduler(coordinator, settings)
        scheduler.start()
    app.state.scheduler = scheduler

    app_logger.info("Application initialized successfully")

    yield

    # Shutdown
    app_logger.info(f"{settings.APP_NAME} API shutting down")
    if scheduler is not None:
        scheduler.shutdown()
    try:
        await coordinator.close()
    except Exception as e:
        app_logger.error(f"Coordinator shutdown failed: {e}")
    app.state.coordinator = None
    app.state.scheduler = None
    await close_db()
    app_logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    servers=[
        {
            "url": "http://localhost:8000",
            "description": "Development server",
        },
    ],
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # Add PRODUCTION DOMAINS HERE
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing information using Loguru."""
    start_time = datetime.now()

    log_request_start(request)

    try:
        response = await call_next(request)

        process_time = (datetime.now() - start_time).total_seconds()
        log_request_end(request, response.status_code, process_time)

        return response

    except Exception as e:
        process_time = (datetime.now() - start_time).total_seconds()
        log_request_error(request, e, process_time)
        raise


@app.exception_handler(CoordinatorError)
async def coordinator_error_handler(request: Request, exc: CoordinatorError):
    """Map domain errors to their HTTP status with an ErrorResponse body."""
    if exc.status_code >= 500:
        app_logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        app_logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")

    current_status = exc.current_status if isinstance(exc, ConflictError) else None
    body = error_response(error=exc.message, detail=exc.detail, current_status=current_status)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.get("/", tags=["health"])
async def root():
    """Root endpoint with basic API information."""
    app_logger.info("Root endpoint accessed")
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "status": "operational",
        "store": settings.STORE_BACKEND,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/status", tags=["health"])
async def status():
    """Status endpoint with build information for CI/CD monitoring."""
    app_logger.info("Status endpoint accessed")

    # Get build information from environment variables (CI-injected)
    build_number = os.getenv("BUILD_NUMBER", "local-dev")
    git_sha = os.getenv("GIT_SHA", os.getenv("GITHUB_SHA", get_git_sha()))
    environment = os.getenv("ENVIRONMENT", os.getenv("ENV", "development"))

    return {
        "status": "ok",
        "build": build_number,
        "sha": git_sha,
        "env": environment
    }


@app.get("/health/db", tags=["health"])
async def health_db(request: Request):
    """Store health endpoint: runs a lightweight read against the durable store."""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "db": "unavailable", "message": "Coordinator not initialized"}
        )

    is_ok, message = await coordinator.store.ping()
    if not is_ok:
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "db": "unavailable", "message": message}
        )
    return {"status": "ok", "db": "available", "backend": settings.STORE_BACKEND, "message": message}


# Include API routers
app.include_router(auth_router)
app.include_router(requests_router)
app.include_router(sessions_router)
app.include_router(audit_router)
app.include_router(devices_router)
app.include_router(notifications_router)


if __name__ == "__main__":
    import uvicorn

    app_logger.info(f"Starting {settings.APP_NAME} API server")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_config=None  # Use our custom logger
    )
