"""Broker Ops - exception dashboard API"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from broker_ops.core.config import get_settings
from broker_ops.core.logging import configure_logging, logger
from broker_ops.routers import dashboard
from broker_ops.services.dashboard import DashboardTicker, get_dashboard_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level, json_output=not settings.is_demo_mode())
    logger.info(
        "Broker Ops API starting",
        version="0.1.0",
        app_mode=settings.normalized_app_mode(),
        tick_interval_seconds=settings.tick_interval_seconds,
    )
    ticker = None
    if settings.tick_interval_seconds > 0:
        ticker = DashboardTicker(get_dashboard_engine(), settings.tick_interval_seconds)
        ticker.start()
    yield
    # Shutdown
    if ticker is not None:
        await ticker.stop()
    logger.info("Broker Ops API shutting down")


app = FastAPI(
    title="Broker Ops API",
    description="Load exception evaluation, notifications, and broker action queue",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dashboard.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Broker Ops API",
        "version": "0.1.0",
        "description": "Broker operations dashboard core",
        "endpoints": {
            "dashboard": "/dashboard",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
