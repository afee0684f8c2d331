"""
Error taxonomy for the notification ingress pipeline.

AuthError     - request is rejected before any side effect (400 / 401).
ResolveError  - email content could not be produced (400 / 500).
ConfirmError  - the subscription confirmation callback failed (422).
IngestionError - the ingestion sink could not store the email (500).
"""

from typing import Optional


class AuthError(Exception):
    """Base class for transport authentication failures."""


class MalformedNotification(AuthError):
    """Body is not a well-formed SNS envelope."""


class UnknownTopic(AuthError):
    """Envelope comes from a topic that is not subscribed."""

    def __init__(self, topic_id: str):
        super().__init__(f"Unknown topic: {topic_id}")
        self.topic_id = topic_id


class BadSignature(AuthError):
    """Envelope signature could not be verified."""


class CertificateFetchError(Exception):
    """Signing certificate could not be retrieved."""


class ResolveError(Exception):
    """Base class for content resolution failures."""


class NoContent(ResolveError):
    """Notification carries neither inline content nor a storage reference."""


class StorageFailure(ResolveError):
    """Fetching offloaded content from object storage failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ConfirmError(Exception):
    """Base class for subscription confirmation failures."""


class UntrustedConfirmationUrl(ConfirmError):
    """SubscribeURL does not point at a trusted SNS host."""


class ConfirmationRejected(ConfirmError):
    """SubscribeURL answered with a non-2xx status (or not at all)."""

    def __init__(self, status_code: Optional[int]):
        super().__init__(f"Subscription confirmation rejected (status={status_code})")
        self.status_code = status_code


class IngestionError(Exception):
    """Raw email could not be handed to the ingestion sink."""
