"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.middleware import setup_cors_middleware, access_log_middleware
from app.core.otel import initialize_otel, instrument_app
from app.db.session import engine, init_db

# Import routers
from app.api import auth, transactions, goals, diary, insights, subscriptions, monitoring

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        logger.info(f"OpenTelemetry initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Rumina Finance Backend",
    description="Personal finance tracking, goals, diary and AI insights",
    version="1.0.0",
    lifespan=lifespan
)

instrument_app(app, engine)
setup_cors_middleware(app)
app.middleware("http")(access_log_middleware)

# Include routers
app.include_router(monitoring.router)
app.include_router(auth.router)
app.include_router(transactions.router)
app.include_router(goals.router)
app.include_router(diary.router)
app.include_router(insights.router)
app.include_router(insights.dashboard_router)
app.include_router(subscriptions.router)
app.include_router(subscriptions.stripe_router)
app.include_router(subscriptions.senangpay_router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
