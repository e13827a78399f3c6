"""
Campaign Portal API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .database import Base, SessionLocal, engine, get_db
from .errors import PortalError
from .limiter import limiter
from .logging_config import api_logger, log_request
from .mailer import EmailSender
from .middleware import SecurityHeadersMiddleware
from .realtime import RealtimeHub
from .responses import api_exception_handler, portal_error_handler, validation_exception_handler
from .routes import (
    agency_router,
    auth_router,
    campaigns_router,
    cs_router,
    customer_router,
    realtime_router,
)
from .storage import LocalObjectStorage
from .worker.reminders import ReminderScheduler

settings = get_settings()

# Create tables (in production, use Alembic migrations instead)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    # Startup
    app.state.hub = RealtimeHub()
    app.state.email_sender = EmailSender(settings)
    app.state.storage = LocalObjectStorage.from_settings(settings)
    app.state.scheduler = ReminderScheduler(
        SessionLocal,
        app.state.email_sender,
        hub=app.state.hub,
        settings=settings,
    )
    if settings.reminders_enabled:
        app.state.scheduler.start()
    api_logger.info("Campaign portal started", environment=settings.environment)

    yield  # App is running

    # Shutdown
    await app.state.scheduler.stop()


app = FastAPI(
    title="Campaign Portal API",
    description="Campaign approval workflow for CS, customers and agencies",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_exception_handler(PortalError, portal_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, api_exception_handler)
app.add_exception_handler(Exception, api_exception_handler)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request logging with X-Request-ID
app.add_middleware(log_request(api_logger))

# CORS - Properly configured with specific methods
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Routes
app.include_router(auth_router)
app.include_router(cs_router)
app.include_router(customer_router)
app.include_router(agency_router)
app.include_router(campaigns_router)
app.include_router(realtime_router)


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint for load balancers and monitoring."""
    db.execute(text("SELECT 1"))
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": "1.0.0",
        "realtime_connections": app.state.hub.connection_count,
    }
