"""
EtherSub refund daemon host - FastAPI Application
Runs the refund eligibility daemon in the background and reports its health.
"""
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from app.config import load_daemon_config, load_settings
from app.core.logger import configure_logging
from app.database import get_session_factory, init_db
from app.integrations.email import EmailService
from app.models import utc_now
from app.services.refund_daemon import build_refund_daemon
from app.api.routes import health

logger = logging.getLogger(__name__)

API_V1_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # ConfigError propagates: the process must not start with a bad environment.
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("Starting %s...", settings.app_name)

    config = load_daemon_config(settings)

    init_db()
    logger.info("Database initialized")

    daemon = build_refund_daemon(config, get_session_factory(), EmailService(settings))
    daemon.start()
    app.state.refund_daemon = daemon
    logger.info("API running on %s environment", settings.app_env)
    yield
    # Shutdown
    await daemon.stop()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title="EtherSub Refund Daemon",
    description="Refund eligibility daemon for EtherSub subscriptions",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/")
async def root() -> dict:
    settings = load_settings()
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": utc_now().isoformat(),
    }


app.include_router(health.router, prefix=API_V1_PREFIX, tags=["Health"])
