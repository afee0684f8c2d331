"""
Content resolver: produces the raw email bytes for a "Received" notification.

Inline content is returned as-is. Offloaded content is fetched from S3 in the
region named by the storage reference. No retries happen here; SNS redelivers
when the webhook answers with a non-2xx status.
"""

import logging
import threading
from tempfile import SpooledTemporaryFile
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ingress.exceptions import NoContent, StorageFailure
from ingress.models.notification import DeliveryContent

logger = logging.getLogger(__name__)

# Emails up to this size stay in memory; larger ones spill to a temp file
_SPOOL_MAX_BYTES = 8 * 1024 * 1024


class ObjectFetcher(Protocol):
    def fetch(self, bucket: str, key: str, region: Optional[str]) -> bytes:
        ...


class S3ObjectFetcher:
    """
    boto3-backed ObjectFetcher.

    One S3 client per region is created on first use and reused. Credentials
    come from the standard boto3 chain (env vars, shared config, instance
    role).
    """

    def __init__(self, timeout_s: float = 10.0, default_region: str = "us-east-1"):
        self._config = Config(connect_timeout=timeout_s, read_timeout=timeout_s)
        self._default_region = default_region
        self._clients: dict[str, object] = {}
        self._clients_lock = threading.Lock()

    def _client(self, region: str):
        with self._clients_lock:
            client = self._clients.get(region)
            if client is None:
                client = boto3.client("s3", region_name=region, config=self._config)
                self._clients[region] = client
            return client

    def fetch(self, bucket: str, key: str, region: Optional[str]) -> bytes:
        """
        Download s3://bucket/key into a scoped buffer and return its bytes.

        The buffer is closed on every exit path.

        Raises:
            StorageFailure: object missing, access denied, network failure
        """
        region = region or self._default_region
        client = self._client(region)

        with SpooledTemporaryFile(max_size=_SPOOL_MAX_BYTES) as buffer:
            try:
                client.download_fileobj(bucket, key, buffer)
            except (ClientError, BotoCoreError) as e:
                logger.error(
                    f"Failed to fetch s3://{bucket}/{key} (region={region}): {e}"
                )
                raise StorageFailure(f"Failed to fetch s3://{bucket}/{key}: {e}", e) from e

            try:
                buffer.seek(0)
                data = buffer.read()
            except OSError as e:
                raise StorageFailure(f"Failed to read s3://{bucket}/{key}: {e}", e) from e

        logger.info(f"Fetched s3://{bucket}/{key} ({len(data):,} bytes)")
        return data


class ContentResolver:
    def __init__(self, object_fetcher: ObjectFetcher):
        self._fetcher = object_fetcher

    def resolve(self, content: DeliveryContent) -> bytes:
        """
        Return the raw email bytes for a delivery.

        Raises:
            NoContent: neither inline content nor a storage reference
            StorageFailure: the storage fetch failed
        """
        if content.inline_content:
            return content.inline_content

        ref = content.storage_ref
        if ref is None:
            raise NoContent("Notification carries no email content")

        try:
            return self._fetcher.fetch(ref.bucket, ref.object_key, ref.region)
        except StorageFailure:
            raise
        except Exception as e:
            logger.error(f"Object fetch failed for s3://{ref.bucket}/{ref.object_key}: {e}")
            raise StorageFailure(f"Failed to fetch s3://{ref.bucket}/{ref.object_key}: {e}", e) from e
