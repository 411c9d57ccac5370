"""
Free Tables - FastAPI Backend Application
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
import structlog

from app.config import settings
from app.core.errors import ReservationError, reservation_error_handler
from app.api import reservations
from app.webhooks import twilio

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Free Tables API", version="1.0.0", telephony=settings.twilio_configured)
    yield
    logger.info("Shutting down Free Tables API")


# Create FastAPI application
app = FastAPI(
    title="Free Tables",
    description="Walk-in table requests confirmed by the restaurant over the phone",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ReservationError, reservation_error_handler)


# Health check endpoints
@app.get("/health")
async def health():
    """Basic health check"""
    return {"status": "healthy", "service": "api", "version": "1.0.0"}


async def check_database() -> None:
    from app.database import SessionLocal

    async with SessionLocal() as db:
        await db.execute(text("SELECT 1"))


def check_sweeper_broker() -> None:
    """The expiry sweep is scheduled through the Celery broker"""
    from app.jobs.celery_app import celery_app

    with celery_app.connection_for_write() as conn:
        conn.ensure_connection(max_retries=1)


@app.get("/health/ready")
async def ready():
    """
    Readiness for taking reservations: the database, the broker the expiry
    sweeper runs on, and Twilio credentials for the confirmation call.
    """
    checks = {}

    try:
        await check_database()
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"failed: {str(e)}"

    try:
        check_sweeper_broker()
        checks["sweeper_broker"] = "ok"
    except Exception as e:
        checks["sweeper_broker"] = f"failed: {str(e)}"

    checks["telephony"] = "ok" if settings.twilio_configured else "not_configured"

    all_ok = all(v == "ok" for v in checks.values())

    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
    }



# Include API routers
app.include_router(reservations.router, prefix="/reservations", tags=["Reservations"])

# Include webhook routers
app.include_router(twilio.router, prefix="/webhooks/twilio", tags=["Webhooks"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
