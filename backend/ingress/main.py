"""
Inbound Email Ingress API
FastAPI application receiving Amazon SES emails delivered through SNS.
"""

import logging

from fastapi import FastAPI

from ingress.config import get_settings
from ingress.routers import inbound_notifications

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Inbound Email Ingress",
    description="Verifies Amazon SNS notifications and ingests SES-received emails",
    version="0.1.0",
)

app.include_router(inbound_notifications.router, tags=["inbound"])


@app.on_event("startup")
async def log_ingress_configuration() -> None:
    """Log whether the Amazon ingress is enabled and which topics it accepts."""
    settings = get_settings()
    if not settings.is_enabled:
        logger.warning(
            "Amazon ingress is disabled (INBOUND_INGRESS is not 'amazon'); "
            "/inbound-notifications will answer 404"
        )
        return

    if not settings.subscribed_topics:
        logger.warning(
            "No subscribed topics configured (AMAZON_SUBSCRIBED_TOPICS); "
            "all notifications will be rejected"
        )
    for topic in sorted(settings.subscribed_topics):
        logger.info(f"Accepting SNS notifications from {topic}")


@app.on_event("shutdown")
async def close_http_clients() -> None:
    inbound_notifications.close_pipeline()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/config")
async def health_config():
    """Report ingress configuration without exposing credentials."""
    settings = get_settings()
    return {
        "status": "ok",
        "ingress_enabled": settings.is_enabled,
        "subscribed_topics": len(settings.subscribed_topics),
    }
