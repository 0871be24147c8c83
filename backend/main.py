# main.py — TaskLedger API
# Features:
# - Request correlation IDs bound into the structured logger
# - Security headers
# - Policy / billing / invitation errors mapped to HTTP responses
# - Health check with DB verification

import os
import json
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from billing import ComputationError
from database import init_db, close_db, get_db_session
from invitations import InvitationRejected
from logging_system import (
    get_logger, RequestContext, set_current_context, reset_current_context, LogCategory,
)
from telemetry import setup_telemetry, shutdown_telemetry

VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("taskledger")
structured = get_logger()


def _check_startup_config():
    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        logger.warning("JWT_SECRET_KEY is not set or shorter than 32 characters")
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting TaskLedger v{VERSION}")
    await init_db()
    _check_startup_config()
    setup_telemetry(app)
    yield
    logger.info("Shutting down TaskLedger")
    shutdown_telemetry()
    await close_db()


app = FastAPI(
    title="TaskLedger",
    description="Multi-tenant task tracking with role-based access and payable reports",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    token = set_current_context(RequestContext.create(request_id=request_id, correlation_id=correlation_id))
    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start
        structured.request(request.method, request.url.path, response.status_code, duration * 1000)
    finally:
        reset_current_context(token)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(InvitationRejected)
async def invitation_rejected_handler(request: Request, exc: InvitationRejected):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"reason": exc.reason.value, "message": str(exc)}},
    )


@app.exception_handler(ComputationError)
async def computation_error_handler(request: Request, exc: ComputationError):
    structured.warning(f"Billing computation failed: {exc}", category=LogCategory.BILLING)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    structured.error("Unhandled exception", error=exc, metadata={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (  # noqa: E402
    auth, organizations, projects, tasks, users, invitations, notifications,
)

app.include_router(auth.router)
app.include_router(organizations.router)
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(users.router)
app.include_router(invitations.router)
app.include_router(notifications.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    }


@app.get("/")
async def root():
    return {
        "name": "TaskLedger",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
