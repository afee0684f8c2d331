"""
Amazon SES/SNS inbound notification webhook.

Configure SES to route received emails through an SNS topic, subscribe
https://<host>/inbound-notifications to that topic, and list the topic ARN
in AMAZON_SUBSCRIBED_TOPICS. SNS posts the subscription confirmation first;
once confirmed, every received email arrives as a Notification.

Endpoints:
  POST /inbound-notifications   - SNS webhook (auth: SNS message signature)

Responses:
  204  notification processed
  200  subscription confirmed
  400  malformed body or no usable email content
  401  unknown topic or invalid signature
  404  ingress not configured (INBOUND_INGRESS != "amazon")
  422  subscription confirmation rejected by SNS
  500  content fetch or ingestion failed
"""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ingress.config import IngressSettings, get_settings
from ingress.services.pipeline import NotificationPipeline, build_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def require_ingress_enabled(settings: IngressSettings = Depends(get_settings)) -> None:
    """Answer 404 unless the Amazon ingress is configured."""
    if not settings.is_enabled:
        raise HTTPException(status_code=404, detail="Not Found")


@lru_cache(maxsize=1)
def get_pipeline() -> NotificationPipeline:
    return build_pipeline(get_settings())


def close_pipeline() -> None:
    """Close the cached pipeline, if one was built, and forget it."""
    if get_pipeline.cache_info().currsize:
        get_pipeline().close()
    get_pipeline.cache_clear()


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

@router.post("/inbound-notifications", dependencies=[Depends(require_ingress_enabled)])
async def receive_notification(
    request: Request,
    pipeline: NotificationPipeline = Depends(get_pipeline),
) -> Response:
    """
    SNS webhook receiver.

    The raw body is read as-is; SNS posts JSON with a text/plain content type
    for raw HTTP(S) subscriptions, so no content-type based parsing is done.
    The pipeline makes blocking network calls and runs in the threadpool.
    """
    raw_body = await request.body()
    outcome = await run_in_threadpool(pipeline.process, raw_body, request.headers)

    if outcome.status_code == 204:
        return Response(status_code=204)
    if outcome.status_code == 200:
        return JSONResponse(status_code=200, content={"status": "confirmed"})
    return JSONResponse(status_code=outcome.status_code, content={"detail": outcome.detail})
