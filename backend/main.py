# main.py - buildefect API
# Features:
# - Request IDs and timing log line per request
# - Security headers
# - Uniform {"error": "..."} error bodies
# - Health check with DB verification
# - Uploaded files served from /uploads

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, get_db_session
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("buildefect")

VERSION = "1.0.0"


def _check_startup_config():
    """Log warnings for unsafe configuration."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32 or jwt_key == "replace-this-secret":
        warnings.append(
            "JWT_SECRET_KEY is not set or shorter than 32 characters; "
            "generate one with secrets.token_urlsafe(48)"
        )

    if os.getenv("ENVIRONMENT", "development") == "production" and os.getenv("DATABASE_URL", "").startswith("sqlite"):
        warnings.append("DATABASE_URL points at SQLite in production")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting buildefect v{VERSION}...")
    await init_db()
    _check_startup_config()
    setup_telemetry(app)
    yield
    logger.info("Shutting down buildefect...")
    await close_db()


app = FastAPI(
    title="buildefect",
    description="Defect tracking for construction projects",
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
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


# ============================================================
# MIDDLEWARE: Request IDs + Timing
# ============================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
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
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _describe_validation_error(err: dict) -> str:
    loc = [str(part) for part in err.get("loc", []) if part != "body"]
    source = err.get("loc", ["body"])[0]
    if source == "path":
        return f"invalid {loc[-1]}" if len(loc) > 1 else "invalid id"
    if not loc or err.get("type") == "json_invalid":
        return "invalid request body"
    return f"invalid {loc[-1]}: {err.get('msg', '')}"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = _describe_validation_error(errors[0]) if errors else "invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal server error"},
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, users, buildings, defects, comments, attachments

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(buildings.router)
app.include_router(defects.router)
app.include_router(comments.router)
app.include_router(attachments.router)

app.mount(
    attachments.PUBLIC_PREFIX,
    StaticFiles(directory=attachments.UPLOAD_ROOT, check_dir=False),
    name="uploads",
)


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
        "name": "buildefect",
        "version": VERSION,
        "description": "Defect tracking for construction projects",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
