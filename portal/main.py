import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import config, models  # noqa: F401
from .database import Base, engine, get_db
from .domain.admin.router import router as admin_router
from .domain.bookings.router import router as bookings_router
from .domain.documents.router import router as documents_router
from .domain.specialists.router import router as specialists_router
from .domain.webhooks.router import router as webhooks_router
from .errors import AppError
from .security_headers import SecurityHeadersMiddleware
from .services.acuity_service import AcuityAPIError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"


def _redis_ping() -> bool:
    from . import rate_limiter

    return bool(rate_limiter.get_redis_client().ping())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"❌ Failed to create database tables: {e}")

    try:
        _redis_ping()
        logger.info("✅ Redis connection established")
    except Exception as e:
        logger.warning(
            f"⚠️ Redis connection failed - Rate limiting and caching will operate in fail-open mode: {e}"
        )

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Medibytes Booking API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"🚫 {request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(AcuityAPIError)
async def acuity_error_handler(request: Request, exc: AcuityAPIError):
    logger.error(f"❌ Acuity error on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=502,
        content={
            "code": "EXTERNAL_SERVICE_ERROR",
            "message": f"Acuity error: {exc.message}",
            "details": {"code": exc.code},
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"🚫 Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={"code": "UNAUTHORIZED", "message": "Authentication required", "details": None},
            )

    logger.warning(f"⚠️ Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Invalid request",
            "details": [
                {"field": ".".join(str(p) for p in err.get("loc", [])), "message": err.get("msg")}
                for err in exc.errors()
            ],
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    message = "An unexpected error occurred" if config.IS_PRODUCTION else str(exc)
    return JSONResponse(
        status_code=500, content={"code": "INTERNAL_SERVER_ERROR", "message": message, "details": None}
    )


@app.middleware("http")
async def rate_limit_headers(request: Request, call_next):
    response = await call_next(request)
    limit = getattr(request.state, "rate_limit_limit", None)
    if limit is not None:
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(request.state.rate_limit_remaining)
        response.headers["X-RateLimit-Reset"] = str(request.state.rate_limit_reset)
    return response


@app.middleware("http")
async def impersonation_headers(request: Request, call_next):
    response = await call_next(request)
    impersonated_by = getattr(request.state, "impersonated_by", None)
    if impersonated_by:
        response.headers["X-Impersonated-By"] = impersonated_by
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise
    elapsed_ms = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} ({elapsed_ms:.0f}ms)")
    return response


if SECURITY_HEADERS_ENABLED:
    app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/docs", "/openapi.json"])
    logger.info("Security headers enabled")
else:
    logger.warning("⚠️ Security headers DISABLED - only use in development!")

logger.info(f"CORS allowed origins: {config.ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After", "Content-Range"],
)

# Routes
app.include_router(bookings_router)
app.include_router(documents_router)
app.include_router(specialists_router)
app.include_router(admin_router)
app.include_router(webhooks_router)


@app.get("/")
def root():
    return {"message": "Medibytes Booking API is running"}


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    """Database and Redis connectivity for monitoring"""
    checks = {"database": "ok", "redis": "ok"}
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"❌ Health check database failure: {e}")
        checks["database"] = "error"
    try:
        _redis_ping()
    except Exception as e:
        logger.warning(f"⚠️ Health check Redis failure: {e}")
        checks["redis"] = "error"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, "checks": checks, "timestamp": time.time()}
