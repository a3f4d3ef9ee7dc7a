# sitemetrics/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI

from sitemetrics.config import MetricsSettings, configure_metrics, get_metrics_config
from sitemetrics.context import create_context
from sitemetrics.publisher import publish_heartbeat, publish_metrics, publish_system_status
from sitemetrics.stream import router as stream_router
from sitemetrics.webhook import router as webhook_router

logger = logging.getLogger(__name__)


def create_app(config: Optional[MetricsSettings] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""

        # Startup
        logger.info("Starting Site Metrics API...")

        settings = config or get_metrics_config()
        context = create_context(settings)
        app.state.metrics = context

        scheduler = BackgroundScheduler(daemon=True)

        # Push snapshots to connected dashboards
        scheduler.add_job(
            publish_metrics,
            trigger="interval",
            seconds=settings.metrics_broadcast_interval_seconds,
            args=[context],
            id="publish_metrics",
            replace_existing=True,
        )

        # System status and heartbeat share the slower cadence
        scheduler.add_job(
            publish_system_status,
            trigger="interval",
            seconds=settings.heartbeat_interval_seconds,
            args=[context],
            id="publish_system_status",
            replace_existing=True,
        )
        scheduler.add_job(
            publish_heartbeat,
            trigger="interval",
            seconds=settings.heartbeat_interval_seconds,
            args=[context],
            id="heartbeat",
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Scheduler started")

        logger.info("Site Metrics API ready - listening for page views")

        yield

        # Shutdown
        logger.info("Shutting down...")

        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")

        # Final persist before exit
        context.close()
        logger.info("Final metrics persist complete")

    app = FastAPI(
        title="Site Metrics API",
        description="Tracks page views and sessions and streams live metrics",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Register routes
    app.include_router(webhook_router)
    app.include_router(stream_router)

    return app


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
configure_metrics(logger_factory=lambda: logging.getLogger("sitemetrics"))

app = create_app()
