from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging
import os

from app.core.config import settings
from app.core.database import SessionLocal, engine
from app.core.exceptions import IdentityException
from app.core.rate_limit import limiter
from app.core.middleware import (
    SecurityHeadersMiddleware,
    RequestValidationMiddleware,
)
from app.core.scheduler import start_scheduler, shutdown_scheduler
from app.api.routes.auth import router as auth_router
from app.api.routes.users import router as users_router
from app.api.routes.staff import router as staff_router
from app.services.notifications import build_notification_gateway
from app.services.revocation_store import build_revocation_store, create_redis_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def run_migrations():
    """Run database migrations on startup."""
    try:
        from alembic.config import Config
        from alembic import command

        logger.info("Running database migrations...")
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Failed to run migrations: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Identity API...")

    errors = settings.validate_required_secrets()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        if IS_PRODUCTION:
            raise RuntimeError("Invalid configuration: " + "; ".join(errors))

    if IS_PRODUCTION:
        run_migrations()

    # Long-lived clients shared by every request
    app.state.redis_client = None
    if settings.REVOCATION_BACKEND == "redis" and settings.REDIS_URL:
        app.state.redis_client = create_redis_client(settings.REDIS_URL)
        logger.info("Using Redis revocation store")
    else:
        logger.info("Using database revocation store")
    app.state.notification_gateway = build_notification_gateway()

    start_scheduler(app.state.redis_client)

    logger.info("Identity API started successfully")
    yield
    # Shutdown
    shutdown_scheduler()
    app.state.notification_gateway.close()
    if app.state.redis_client is not None:
        app.state.redis_client.close()
    logger.info("Shutting down Identity API...")

# Determine if running in production
IS_PRODUCTION = os.getenv("ENVIRONMENT", "development") == "production"

app = FastAPI(
    title="Identity API",
    description="Registration, login and session management for donors, beneficiaries and staff",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Exception handlers
@app.exception_handler(IdentityException)
async def identity_exception_handler(request: Request, exc: IdentityException):
    """Handle custom identity exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
        },
        headers=exc.headers,
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "A database error occurred",
            "error_code": "DATABASE_ERROR",
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
        },
    )

# Security middleware (order matters - first added = last executed)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestValidationMiddleware)

# Configure CORS
allowed_origins = [settings.FRONTEND_URL]
if not IS_PRODUCTION:
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=600,
)

# Include routers
app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(staff_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Welcome to the Identity API"}


@app.get("/health")
def health_check(request: Request):
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    # Check the revocation store; token validation fails closed without it
    db = SessionLocal()
    try:
        store = build_revocation_store(db, getattr(request.app.state, "redis_client", None))
        health_status["revocation_store"] = "connected" if store.ping() else "disconnected"
    finally:
        db.close()
    if health_status["revocation_store"] != "connected":
        health_status["status"] = "unhealthy"

    return health_status
