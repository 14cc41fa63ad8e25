"""
Main FastAPI Application

Entry point for the MasterBackup API: middleware stack, routers, error
shaping and startup/shutdown.
"""
from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.api.endpoints import auth, tenants, users
from app.config import get_settings
from app.core.exceptions import APIError, TenantIsolationError, error_response
from app.core.tenant_db import tenant_engines
from app.database import engine, init_db
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.tenant import TenantMiddleware
from app.utils.logging import get_logger, setup_logging

settings = get_settings()

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting MasterBackup API {__version__} "
        f"(environment={settings.ENVIRONMENT}, tenant databases={settings.TENANT_DATABASE_MODE})"
    )

    # Schema management is left to migrations in production
    if settings.ENVIRONMENT in ("development", "test"):
        init_db()

    yield

    tenant_engines.dispose_all()
    engine.dispose()
    logger.info("Database pools closed")


app = FastAPI(
    title="MasterBackup API",
    description="Multi-tenant account API with per-tenant databases, 2FA and invitations",
    version=__version__,
    lifespan=lifespan
)

# Starlette runs the middleware added last first. Rate limiting reads the
# tenant resolved by TenantMiddleware, so it is added before it.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(TenantMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{time.perf_counter() - started:.4f}"
    return response


@app.exception_handler(APIError)
async def domain_error_handler(request: Request, exc: APIError):
    """Shape every domain error as {"detail", "type"}."""
    if isinstance(exc, TenantIsolationError):
        # CRITICAL: isolation violations should be alerted on
        logger.error(
            f"TENANT ISOLATION VIOLATION on {request.method} {request.url.path}: {exc.detail}",
            extra={"tenant_id": getattr(request.state, "tenant_id", None)}
        )

    return error_response(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """
    Last resort for anything the routes didn't turn into an HTTP error.

    The client only sees details with DEBUG on; the log always has the traceback.
    """
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
        exc_info=True,
        extra={"tenant_id": getattr(request.state, "tenant_id", None)}
    )
    if settings.DEBUG:
        content = {"detail": str(exc), "type": type(exc).__name__}
    else:
        content = {"detail": "Internal server error", "type": "internal_error"}
    return JSONResponse(status_code=500, content=content)


@app.get("/health", tags=["health"])
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT, "version": __version__}


@app.get("/", tags=["root"])
async def root():
    return {"message": "MasterBackup API", "version": __version__, "docs": "/docs", "health": "/health"}


for router in (auth.router, users.router, tenants.router):
    app.include_router(router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
