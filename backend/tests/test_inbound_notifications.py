"""
POST /inbound-notifications end-to-end tests.

The real pipeline runs with:
  - signing certificate and SubscribeURL served by httpx.MockTransport
  - S3 mocked with moto
  - a recording ingestion sink instead of Supabase

Coverage:
  - inbound email delivered inline (204, raw bytes handed to the sink)
  - inbound email offloaded to S3 (204, fetched bytes handed to the sink)
  - subscription confirmation (200 / 422)
  - unknown topic and bad signatures (401, no callbacks)
  - malformed bodies and missing content (400)
  - storage and ingestion failures (500)
  - ingress not configured (404)
"""

import json
from unittest.mock import MagicMock

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from ingress.config import get_settings
from ingress.exceptions import IngestionError
from ingress.main import app
from ingress.routers.inbound_notifications import get_pipeline
from ingress.services.authenticator import CertificateCache, TransportAuthenticator
from ingress.services.confirmation import SubscriptionConfirmer
from ingress.services.content_resolver import ContentResolver, S3ObjectFetcher
from ingress.services.pipeline import NotificationPipeline, build_pipeline

from sns_fixtures import (
    MESSAGE_ID_HEADER,
    RAW_EMAIL,
    RECOGNIZED_TOPIC,
    S3_EMAIL,
    TOPIC,
    UNRECOGNIZED_TOPIC,
    FakeSns,
    make_notification_envelope,
    make_received_message,
    make_settings,
    make_subscription_envelope,
    subscribe_url_for,
    to_body,
)

ENDPOINT = "/inbound-notifications"


class RecordingSink:
    """Ingestion sink double that records every raw email it receives."""

    def __init__(self):
        self.emails: list[bytes] = []

    def create_inbound_email(self, raw: bytes) -> str:
        self.emails.append(raw)
        return f"email-{len(self.emails)}"


def _build(fake_sns, sink, fetcher=None, settings=None) -> NotificationPipeline:
    settings = settings or make_settings()
    client = fake_sns.client()
    return NotificationPipeline(
        authenticator=TransportAuthenticator(settings, CertificateCache(client)),
        confirmer=SubscriptionConfirmer(settings, client),
        resolver=ContentResolver(fetcher or S3ObjectFetcher()),
        sink=sink,
    )


@pytest.fixture()
def fake_sns():
    return FakeSns()


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def client(fake_sns, sink):
    """TestClient with the pipeline wired to fakes."""
    pipeline = _build(fake_sns, sink)
    app.dependency_overrides[get_settings] = lambda: make_settings()
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def _post(client, envelope: dict, content_type: str = "text/plain; charset=UTF-8"):
    return client.post(
        ENDPOINT,
        content=to_body(envelope),
        headers={
            "Content-Type": content_type,
            "x-amz-sns-message-type": envelope.get("Type", ""),
        },
    )


# ===========================================================================
# Inbound emails
# ===========================================================================

class TestInboundEmail:

    def test_receiving_inline_email(self, client, sink):
        envelope = make_notification_envelope()

        response = _post(client, envelope)

        assert response.status_code == 204
        assert response.content == b""
        assert sink.emails == [RAW_EMAIL.encode()]

    def test_ingested_bytes_equal_inner_content_field(self, client, sink):
        envelope = make_notification_envelope()
        content = json.loads(envelope["Message"])["content"]

        _post(client, envelope, content_type="application/json")

        assert sink.emails[0].decode("utf-8") == content
        assert f"<{MESSAGE_ID_HEADER}>".encode() in sink.emails[0]

    def test_replayed_envelope_is_accepted_twice(self, client, sink, fake_sns):
        envelope = make_notification_envelope()

        first = _post(client, envelope)
        second = _post(client, envelope)

        assert first.status_code == 204
        assert second.status_code == 204
        assert len(sink.emails) == 2
        assert fake_sns.certificate_fetches == 1

    def test_bounce_notification_is_accepted_but_not_ingested(self, client, sink):
        envelope = make_notification_envelope(
            message=make_received_message(notification_type="Bounce")
        )

        response = _post(client, envelope)

        assert response.status_code == 204
        assert sink.emails == []

    def test_non_json_inner_message_is_accepted_but_not_ingested(self, client, sink):
        envelope = make_notification_envelope(message="not json at all")

        response = _post(client, envelope)

        assert response.status_code == 204
        assert sink.emails == []

    def test_missing_content_is_bad_request(self, client, sink):
        envelope = make_notification_envelope(message=make_received_message(content=None))

        response = _post(client, envelope)

        assert response.status_code == 400
        assert sink.emails == []


class TestInboundEmailFromS3:

    @pytest.fixture()
    def s3(self, monkeypatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
        with mock_aws():
            s3 = boto3.client("s3", region_name="eu-west-1")
            s3.create_bucket(
                Bucket="inbound-mail",
                CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
            )
            s3.put_object(Bucket="inbound-mail", Key="emails/1344C740", Body=S3_EMAIL.encode())
            yield s3

    def _s3_envelope(self, key: str = "emails/1344C740") -> dict:
        message = make_received_message(
            content=None,
            action={
                "type": "S3",
                "topicArn": TOPIC,
                "bucketName": "inbound-mail",
                "objectKey": key,
            },
        )
        return make_notification_envelope(message=message)

    def test_receiving_email_offloaded_to_s3(self, client, sink, s3):
        response = _post(client, self._s3_envelope())

        assert response.status_code == 204
        assert sink.emails == [S3_EMAIL.encode()]

    def test_missing_s3_object_is_server_error(self, client, sink, s3):
        response = _post(client, self._s3_envelope(key="emails/missing"))

        assert response.status_code == 500
        assert sink.emails == []

    def test_s3_fetch_performed_once(self, fake_sns, sink):
        fetcher = MagicMock()
        fetcher.fetch.return_value = b"raw email"
        pipeline = _build(fake_sns, sink, fetcher=fetcher)

        outcome = pipeline.process(to_body(self._s3_envelope()), {})

        assert outcome.status_code == 204
        fetcher.fetch.assert_called_once_with("inbound-mail", "emails/1344C740", "eu-west-1")
        assert sink.emails == [b"raw email"]


# ===========================================================================
# Subscription confirmation
# ===========================================================================

class TestSubscriptions:

    def test_accepting_subscriptions_to_recognized_topics(self, client, fake_sns):
        envelope = make_subscription_envelope(topic=RECOGNIZED_TOPIC)

        response = _post(client, envelope)

        assert response.status_code == 200
        assert response.json() == {"status": "confirmed"}
        requests = fake_sns.confirmation_requests
        assert len(requests) == 1
        assert str(requests[0].url) == subscribe_url_for(RECOGNIZED_TOPIC)

    def test_rejected_confirmation_is_unprocessable(self, fake_sns, sink):
        fake_sns.confirm_status = 403
        pipeline = _build(fake_sns, sink)
        app.dependency_overrides[get_settings] = lambda: make_settings()
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        try:
            response = _post(TestClient(app), make_subscription_envelope())
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 422
        assert len(fake_sns.confirmation_requests) == 1

    def test_rejecting_subscriptions_to_unrecognized_topics(self, client, fake_sns):
        envelope = make_subscription_envelope(topic=UNRECOGNIZED_TOPIC)

        response = _post(client, envelope)

        assert response.status_code == 401
        assert fake_sns.requests == []

    def test_rejecting_subscriptions_with_invalid_signatures(self, client, fake_sns):
        envelope = make_subscription_envelope()
        envelope["SubscribeURL"] = subscribe_url_for(RECOGNIZED_TOPIC, token="forged")

        response = _post(client, envelope)

        assert response.status_code == 401
        assert fake_sns.confirmation_requests == []

    def test_unsubscribe_confirmation_is_accepted(self, client, fake_sns):
        envelope = make_subscription_envelope(kind="UnsubscribeConfirmation")

        response = _post(client, envelope)

        assert response.status_code == 204
        assert fake_sns.confirmation_requests == []


# ===========================================================================
# Rejected requests
# ===========================================================================

class TestRejectedRequests:

    def test_malformed_body_is_bad_request(self, client, fake_sns):
        response = client.post(ENDPOINT, content=b"{oops", headers={"Content-Type": "text/plain"})

        assert response.status_code == 400
        assert fake_sns.requests == []

    def test_unknown_topic_is_unauthorized(self, client, sink, fake_sns):
        envelope = make_notification_envelope(topic=UNRECOGNIZED_TOPIC)

        response = _post(client, envelope)

        assert response.status_code == 401
        assert fake_sns.requests == []
        assert sink.emails == []

    def test_unknown_topic_with_missing_fields_is_unauthorized(self, client, sink, fake_sns):
        envelope = make_notification_envelope(topic=UNRECOGNIZED_TOPIC)
        del envelope["SigningCertURL"]

        response = _post(client, envelope)

        assert response.status_code == 401
        assert fake_sns.requests == []
        assert sink.emails == []

    def test_tampered_envelope_is_unauthorized(self, client, sink):
        envelope = make_notification_envelope()
        envelope["Message"] = envelope["Message"].replace("Hello", "Hellp")

        response = _post(client, envelope)

        assert response.status_code == 401
        assert sink.emails == []

    def test_mismatched_message_type_header_is_bad_request(self, client):
        envelope = make_notification_envelope()

        response = client.post(
            ENDPOINT,
            content=to_body(envelope),
            headers={"x-amz-sns-message-type": "SubscriptionConfirmation"},
        )

        assert response.status_code == 400

    def test_ingestion_failure_is_server_error(self, fake_sns):
        sink = MagicMock()
        sink.create_inbound_email.side_effect = IngestionError("db down")
        pipeline = _build(fake_sns, sink)

        outcome = pipeline.process(to_body(make_notification_envelope()), {})

        assert outcome.status_code == 500


# ===========================================================================
# Configuration
# ===========================================================================

class TestIngressNotConfigured:

    def test_returns_404_when_ingress_disabled(self, fake_sns, sink):
        app.dependency_overrides[get_settings] = lambda: make_settings(ingress="")
        app.dependency_overrides[get_pipeline] = lambda: _build(fake_sns, sink)
        try:
            response = _post(TestClient(app), make_notification_envelope())
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 404
        assert fake_sns.requests == []
        assert sink.emails == []


class TestBuildPipeline:

    def test_wires_default_stages(self, fake_sns):
        pipeline = build_pipeline(make_settings(), http_client=fake_sns.client())
        assert isinstance(pipeline, NotificationPipeline)

    def test_close_closes_client_it_created(self):
        pipeline = build_pipeline(make_settings())

        pipeline.close()

        assert pipeline._http_client.is_closed

    def test_close_leaves_caller_client_open(self, fake_sns):
        http_client = fake_sns.client()
        pipeline = build_pipeline(make_settings(), http_client=http_client)

        pipeline.close()

        assert not http_client.is_closed

    def test_app_shutdown_closes_cached_pipeline(self):
        get_pipeline.cache_clear()
        pipeline = get_pipeline()

        with TestClient(app):
            pass

        assert pipeline._http_client.is_closed
        assert get_pipeline.cache_info().currsize == 0


class TestHealth:

    def test_health(self):
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_config_reports_topics(self, monkeypatch):
        monkeypatch.setenv("INBOUND_INGRESS", "amazon")
        monkeypatch.setenv("AMAZON_SUBSCRIBED_TOPICS", f"{TOPIC},{RECOGNIZED_TOPIC}")
        get_settings.cache_clear()
        try:
            response = TestClient(app).get("/health/config")
        finally:
            get_settings.cache_clear()

        assert response.json() == {
            "status": "ok",
            "ingress_enabled": True,
            "subscribed_topics": 2,
        }
