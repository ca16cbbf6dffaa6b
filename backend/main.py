import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import models  # noqa: F401  (registers tables on Base.metadata)
from config import settings
from database import init_db, close_db
from routers import servers_router
from services.errors import ErrorKind
from services.health import run_health_checks
from utils.logging_utils import setup_logging, get_logger
from utils.audit import audit

setup_logging(level=settings.LOG_LEVEL)
logger = get_logger(__name__)


def _log_discovery_settings() -> None:
    if settings.SSH_KNOWN_HOSTS:
        logger.info(f"SSH: verifying host keys against {settings.SSH_KNOWN_HOSTS}")
    else:
        logger.warning("SSH: SSH_KNOWN_HOSTS not set, host keys are not verified")
    logger.info(
        f"SSH: connect {settings.SSH_CONNECT_TIMEOUT:g}s, command {settings.SSH_COMMAND_TIMEOUT:g}s, "
        f"{settings.SYNC_MAX_CONCURRENT_HOSTS} hosts in parallel, "
        f"{settings.HOST_OPERATION_TIMEOUT:g}s per host"
    )
    logger.info(
        f"Migration range {settings.MIGRATION_RANGE_START} - {settings.MIGRATION_RANGE_END} "
        f"on {settings.MIGRATION_TARGET_NETWORK}"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} starting")

    start = time.perf_counter()
    await init_db()
    logger.info(f"Device registry ready in {(time.perf_counter() - start) * 1000:.1f}ms")
    _log_discovery_settings()

    health = await run_health_checks()
    for check in health.checks:
        marker = "+" if check.status == "ok" else "!"
        detail = f" ({check.message})" if check.message else ""
        logger.info(f"  {marker} {check.name}: {check.status}{detail}")
    if health.status != "healthy":
        logger.warning(f"Startup health: {health.status}")

    logger.info("=" * 60)

    yield

    logger.info(f"{settings.APP_NAME} shutting down")
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


# ── Validation errors ─────────────────────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    """
    Per-field messages for rejected requests (bad IP addresses, empty
    container lists, blank terminal commands). Reported with the same
    ``error_kind`` vocabulary the operation results use.
    """
    errors = []
    for error in exc.errors():
        loc_parts = [str(x) for x in error.get("loc", []) if x not in ("body", "query", "path")]
        msg = error.get("msg", "Validation error")
        # Pydantic prefixes custom ValueError messages
        msg = msg.removeprefix("Value error, ")
        errors.append({
            "field": ".".join(loc_parts) or "unknown",
            "message": msg,
            "type": error.get("type", "unknown"),
        })

    logger.warning(f"Rejected {request.method} {request.url.path}: {len(errors)} invalid field(s)")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation failed",
            "error_kind": ErrorKind.PARSE_FAILED.value,
            "errors": errors,
        },
    )


# ── Request ID ────────────────────────────────────────────────────────

@app.middleware("http")
async def request_lifecycle(request: Request, call_next):
    """Tag audit events with a request id and log the request's duration."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    audit.set_request_id(request_id)

    start_time = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start_time) * 1000

    marker = "+" if response.status_code < 400 else "!"
    logger.info(
        f"{marker} {request.method} {request.url.path} "
        f"[{response.status_code}] {duration_ms:.1f}ms rid={request_id[:8]}"
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

app.include_router(servers_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Registry and enrichment status. 503 only when the registry is down."""
    health = await run_health_checks()
    status_code = 503 if health.status == "unhealthy" else 200
    return JSONResponse(content=health.model_dump(), status_code=status_code)


@app.get("/api", tags=["root"])
async def api_root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "endpoints": {
            "servermanagement": "/api/servermanagement",
            "health": "/health",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
