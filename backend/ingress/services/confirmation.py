"""
SNS subscription confirmation handshake.

A SubscriptionConfirmation envelope carries a SubscribeURL; a single GET
against it activates delivery for the topic.
"""

import logging
from urllib.parse import urlparse

import httpx

from ingress.config import IngressSettings
from ingress.exceptions import ConfirmationRejected, UntrustedConfirmationUrl

logger = logging.getLogger(__name__)


class SubscriptionConfirmer:
    def __init__(self, settings: IngressSettings, http_client: httpx.Client):
        self._settings = settings
        self._http = http_client

    def confirm(self, url: str) -> None:
        """
        GET the SubscribeURL once.

        Raises:
            UntrustedConfirmationUrl: url is not an https SNS endpoint (no request made)
            ConfirmationRejected: non-2xx response or transport failure
        """
        parsed = urlparse(url)
        if parsed.scheme != "https" or not self._settings.is_trusted_host(parsed.hostname):
            logger.error(f"Refusing to confirm subscription via untrusted URL: {url}")
            raise UntrustedConfirmationUrl(f"Untrusted SubscribeURL host: {parsed.hostname}")

        try:
            response = self._http.get(url)
        except httpx.HTTPError as e:
            logger.error(f"SNS subscription confirmation request rejected: {e}")
            raise ConfirmationRejected(None) from e

        if not response.is_success:
            logger.error(
                f"SNS subscription confirmation request rejected: HTTP {response.status_code}"
            )
            raise ConfirmationRejected(response.status_code)

        logger.info(f"Confirmed SNS subscription via {parsed.hostname}")
