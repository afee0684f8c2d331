"""
Transport authenticator for Amazon SNS webhook requests.

Parses the raw request body into a Notification, rejects topics that are not
subscribed, and verifies the envelope signature against the SNS signing
certificate.

Signature scheme (SNS SignatureVersion 1 and 2)
-----------------------------------------------
The string-to-sign is built from a fixed, type-dependent list of envelope
keys. For every key that is present the two lines "<key>\\n<value>\\n" are
appended. The base64 Signature is an RSA PKCS#1 v1.5 signature over that
string, SHA1 for version 1 and SHA256 for version 2.

The certificate URL is only fetched when it is https, points at a trusted SNS
host and names a .pem file. Certificates are cached per URL; the signature
itself is verified on every request.
"""

import base64
import binascii
import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional
from urllib.parse import urlparse

import httpx
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pydantic import ValidationError

from ingress.config import IngressSettings
from ingress.exceptions import (
    BadSignature,
    CertificateFetchError,
    MalformedNotification,
    UnknownTopic,
)
from ingress.models.notification import Notification, NotificationKind

logger = logging.getLogger(__name__)

# Headers SNS (or a relaying proxy) may use to announce the message type
_MESSAGE_TYPE_HEADERS = ("x-amz-sns-message-type", "x-message-type")

_NOTIFICATION_SIGNED_KEYS = (
    "Message", "MessageId", "Subject", "Timestamp", "TopicArn", "Type",
)
_SUBSCRIPTION_SIGNED_KEYS = (
    "Message", "MessageId", "SubscribeURL", "Timestamp", "Token", "TopicArn", "Type",
)

_SIGNATURE_HASHES = {
    "1": hashes.SHA1,
    "2": hashes.SHA256,
}


# ---------------------------------------------------------------------------
# Signing certificate cache
# ---------------------------------------------------------------------------

class _UrlLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class CertificateCache:
    """
    Read-through cache of signing certificates, keyed by certificate URL.

    Hits are plain dict reads. A miss takes the lock for that URL only, so
    concurrent requests for the same certificate trigger a single fetch
    while other URLs are fetched independently.
    """

    def __init__(self, http_client: httpx.Client, ttl_s: float = 3600.0):
        self._http = http_client
        self._ttl_s = ttl_s
        self._entries: dict[str, tuple[float, x509.Certificate]] = {}
        self._locks: dict[str, _UrlLock] = {}
        self._locks_guard = threading.Lock()

    def get(self, url: str) -> x509.Certificate:
        cached = self._fresh(url)
        if cached is not None:
            return cached

        with self._locked(url):
            # Another thread may have filled the entry while we waited
            cached = self._fresh(url)
            if cached is not None:
                return cached

            certificate = self._fetch(url)
            if self._ttl_s > 0:
                self._store(url, certificate)
            return certificate

    def _fresh(self, url: str) -> Optional[x509.Certificate]:
        entry = self._entries.get(url)
        if entry is None:
            return None
        expires_at, certificate = entry
        if time.monotonic() >= expires_at:
            return None
        return certificate

    def _store(self, url: str, certificate: x509.Certificate) -> None:
        now = time.monotonic()
        with self._locks_guard:
            for cached_url, (expires_at, _) in list(self._entries.items()):
                if now >= expires_at:
                    del self._entries[cached_url]
            self._entries[url] = (now + self._ttl_s, certificate)

    @contextmanager
    def _locked(self, url: str) -> Iterator[None]:
        """
        Hold the lock for url.

        Each lock counts the threads holding or waiting on it and is removed
        from the map when that count drops to zero.
        """
        with self._locks_guard:
            slot = self._locks.get(url)
            if slot is None:
                slot = self._locks[url] = _UrlLock()
            slot.users += 1

        try:
            with slot.lock:
                yield
        finally:
            with self._locks_guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._locks[url]

    def _fetch(self, url: str) -> x509.Certificate:
        logger.info(f"Fetching SNS signing certificate: {url}")
        try:
            response = self._http.get(url)
        except httpx.HTTPError as e:
            raise CertificateFetchError(f"Failed to fetch {url}: {e}") from e

        if not response.is_success:
            raise CertificateFetchError(
                f"Failed to fetch {url}: HTTP {response.status_code}"
            )

        try:
            return x509.load_pem_x509_certificate(response.content)
        except ValueError as e:
            raise CertificateFetchError(f"Invalid certificate at {url}: {e}") from e


# ---------------------------------------------------------------------------
# String-to-sign
# ---------------------------------------------------------------------------

def build_string_to_sign(fields: Mapping[str, object], kind: NotificationKind) -> str:
    """Build the canonical SNS string-to-sign for an envelope."""
    if kind in (NotificationKind.SUBSCRIPTION_CONFIRMATION, NotificationKind.UNSUBSCRIBE):
        keys = _SUBSCRIPTION_SIGNED_KEYS
    else:
        keys = _NOTIFICATION_SIGNED_KEYS

    parts = []
    for key in keys:
        value = fields.get(key)
        if value is None:
            continue
        parts.append(f"{key}\n{value}\n")
    return "".join(parts)


# ---------------------------------------------------------------------------
# Authenticator
# ---------------------------------------------------------------------------

class TransportAuthenticator:
    """Turns a raw webhook request into a verified Notification."""

    def __init__(
        self,
        settings: IngressSettings,
        certificate_cache: CertificateCache,
    ):
        self._settings = settings
        self._certificates = certificate_cache

    def authenticate(self, raw_body: bytes, headers: Mapping[str, str]) -> Notification:
        """
        Parse and verify an SNS webhook request.

        Raises:
            MalformedNotification: body is not a valid SNS envelope
            UnknownTopic: TopicArn is not subscribed (no certificate fetched)
            BadSignature: signature, certificate URL or certificate is invalid
        """
        fields = self._parse(raw_body)

        topic_id = fields.get("TopicArn")
        if not isinstance(topic_id, str) or not topic_id:
            raise MalformedNotification("Envelope has no TopicArn")

        # Unknown topics are rejected before any other field is validated
        if topic_id not in self._settings.subscribed_topics:
            logger.warning(f"Ignoring unknown topic: {topic_id}")
            raise UnknownTopic(topic_id)

        self._check_message_type_header(fields.get("Type"), headers)

        try:
            notification = Notification.model_validate(fields)
        except ValidationError as e:
            raise MalformedNotification(f"Invalid SNS envelope: {e.error_count()} error(s)") from e

        self._verify(notification, fields)
        return notification

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(raw_body: bytes) -> dict:
        try:
            parsed = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Unable to parse SNS notification: {e}")
            raise MalformedNotification("Request body is not valid JSON") from e

        if not isinstance(parsed, dict):
            raise MalformedNotification("Request body is not a JSON object")
        return parsed

    @staticmethod
    def _check_message_type_header(
        type_name: object, headers: Mapping[str, str]
    ) -> None:
        lowered = {k.lower(): v for k, v in headers.items()}
        for name in _MESSAGE_TYPE_HEADERS:
            announced = lowered.get(name)
            if announced and announced != type_name:
                raise MalformedNotification(
                    f"Message type header {announced!r} does not match body Type "
                    f"{type_name!r}"
                )

    # ------------------------------------------------------------------
    # Signature verification
    # ------------------------------------------------------------------

    def _verify(self, notification: Notification, fields: Mapping[str, object]) -> None:
        hash_cls = _SIGNATURE_HASHES.get(notification.signature_version)
        if hash_cls is None:
            raise BadSignature(
                f"Unsupported SignatureVersion {notification.signature_version!r}"
            )

        cert_url = notification.signing_certificate_url
        if not self._is_trusted_certificate_url(cert_url):
            logger.warning(f"Refusing untrusted signing certificate URL: {cert_url}")
            raise BadSignature("Untrusted signing certificate URL")

        try:
            signature = base64.b64decode(notification.signature, validate=True)
        except (binascii.Error, ValueError) as e:
            raise BadSignature("Signature is not valid base64") from e

        try:
            certificate = self._certificates.get(cert_url)
        except CertificateFetchError as e:
            logger.warning(str(e))
            raise BadSignature("Signing certificate unavailable") from e

        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise BadSignature("Signing certificate does not carry an RSA key")

        string_to_sign = build_string_to_sign(fields, notification.kind)
        try:
            public_key.verify(
                signature,
                string_to_sign.encode("utf-8"),
                padding.PKCS1v15(),
                hash_cls(),
            )
        except InvalidSignature as e:
            logger.warning(
                f"SNS signature mismatch for message {notification.message_id} "
                f"on {notification.topic_id}"
            )
            raise BadSignature("Signature does not match") from e

    def _is_trusted_certificate_url(self, url: str) -> bool:
        parsed = urlparse(url)
        return (
            parsed.scheme == "https"
            and self._settings.is_trusted_host(parsed.hostname)
            and parsed.path.endswith(".pem")
        )
