"""
Notification ingress pipeline.

Composes the three stages (authenticator, decoder, content resolver) with the
subscription confirmer and the ingestion sink, and maps every outcome to the
HTTP status the webhook answers with:

  204  notification accepted (content ingested, or intentionally ignored)
  200  subscription confirmed
  400  malformed envelope, or no usable email content
  401  unknown topic or bad signature
  422  subscription confirmation rejected
  500  storage fetch or ingestion failed (SNS will redeliver)
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import httpx

from ingress.config import IngressSettings
from ingress.exceptions import (
    AuthError,
    ConfirmError,
    IngestionError,
    MalformedNotification,
    NoContent,
    StorageFailure,
)
from ingress.models.notification import ConfirmSubscription, Deliver, Ignore, Notification
from ingress.services.authenticator import CertificateCache, TransportAuthenticator
from ingress.services.confirmation import SubscriptionConfirmer
from ingress.services.content_resolver import ContentResolver, S3ObjectFetcher
from ingress.services.decoder import decode
from ingress.services.inbound_email_store import InboundEmailStore

logger = logging.getLogger(__name__)


class IngestionSink(Protocol):
    def create_inbound_email(self, raw: bytes) -> str:
        ...


@dataclass(frozen=True)
class PipelineOutcome:
    status_code: int
    detail: Optional[str] = None
    inbound_email_id: Optional[str] = None


class NotificationPipeline:
    def __init__(
        self,
        authenticator: TransportAuthenticator,
        confirmer: SubscriptionConfirmer,
        resolver: ContentResolver,
        sink: IngestionSink,
        http_client: Optional[httpx.Client] = None,
    ):
        self._authenticator = authenticator
        self._confirmer = confirmer
        self._resolver = resolver
        self._sink = sink
        # Closed by close(); None when the caller owns the client
        self._http_client = http_client

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()

    def process(self, raw_body: bytes, headers: Mapping[str, str]) -> PipelineOutcome:
        try:
            notification = self._authenticator.authenticate(raw_body, headers)
        except MalformedNotification as e:
            return PipelineOutcome(400, str(e))
        except AuthError as e:
            return PipelineOutcome(401, str(e))

        action = decode(notification)

        if isinstance(action, ConfirmSubscription):
            try:
                self._confirmer.confirm(action.url)
            except ConfirmError as e:
                return PipelineOutcome(422, str(e))
            return PipelineOutcome(200)

        if isinstance(action, Ignore):
            logger.info(
                f"Ignoring notification {notification.message_id}: {action.reason}"
            )
            return PipelineOutcome(204, action.reason)

        return self._deliver(notification, action)

    def _deliver(self, notification: Notification, action: Deliver) -> PipelineOutcome:
        try:
            raw_email = self._resolver.resolve(action.content)
        except NoContent as e:
            logger.warning(f"Notification {notification.message_id} has no email content")
            return PipelineOutcome(400, str(e))
        except StorageFailure as e:
            return PipelineOutcome(500, str(e))

        try:
            email_id = self._sink.create_inbound_email(raw_email)
        except IngestionError as e:
            return PipelineOutcome(500, str(e))

        return PipelineOutcome(204, inbound_email_id=email_id)


def build_pipeline(
    settings: IngressSettings,
    http_client: Optional[httpx.Client] = None,
) -> NotificationPipeline:
    """Wire the default stage implementations around one shared HTTP client."""
    owned_client = None
    if http_client is None:
        owned_client = http_client = httpx.Client(timeout=settings.http_timeout_s)
    client = http_client
    cache = CertificateCache(client, ttl_s=settings.certificate_cache_ttl_s)
    return NotificationPipeline(
        authenticator=TransportAuthenticator(settings, cache),
        confirmer=SubscriptionConfirmer(settings, client),
        resolver=ContentResolver(S3ObjectFetcher(timeout_s=settings.http_timeout_s)),
        sink=InboundEmailStore(settings),
        http_client=owned_client,
    )
