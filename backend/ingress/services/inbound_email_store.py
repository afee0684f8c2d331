"""
Ingestion sink for raw inbound emails.

Stores the raw MIME bytes in Supabase Storage and records an
inbound_emails row that downstream processing picks up (status "pending").

Redelivery is expected: SNS may post the same notification more than once,
so an email whose Message-ID is already recorded is not stored again and the
existing id is returned.

Storage path: inbound/{yyyy}/{mm}/{id}.eml
"""

import hashlib
import logging
import socket
import uuid
from datetime import datetime, timezone
from email.parser import BytesHeaderParser
from typing import Optional

from ingress.config import IngressSettings
from ingress.db import get_supabase_admin
from ingress.exceptions import IngestionError

logger = logging.getLogger(__name__)

_TABLE = "inbound_emails"


def extract_message_id(raw: bytes) -> Optional[str]:
    """Return the Message-ID header without angle brackets, or None."""
    headers = BytesHeaderParser().parsebytes(raw)
    value = headers.get("Message-ID")
    if not value:
        return None
    value = str(value).strip().strip("<>").strip()
    return value or None


def generate_message_id() -> str:
    """Stand-in Message-ID for emails that arrive without one."""
    return f"{uuid.uuid4()}@{socket.gethostname()}.mail"


class InboundEmailStore:
    def __init__(self, settings: IngressSettings):
        self._bucket = settings.inbound_email_bucket

    def create_inbound_email(self, raw: bytes) -> str:
        """
        Persist a raw email and return its inbound_emails id.

        Raises:
            IngestionError: storage upload or database insert failed
        """
        message_id = extract_message_id(raw) or generate_message_id()

        try:
            admin = get_supabase_admin()

            existing = (
                admin.table(_TABLE)
                .select("id")
                .eq("message_id", message_id)
                .limit(1)
                .execute()
            )
            if existing.data:
                email_id = existing.data[0]["id"]
                logger.info(
                    f"Inbound email {message_id} already ingested as {email_id}; skipping"
                )
                return email_id

            email_id = str(uuid.uuid4())
            now = datetime.now(timezone.utc)
            storage_path = f"inbound/{now:%Y}/{now:%m}/{email_id}.eml"

            admin.storage.from_(self._bucket).upload(
                storage_path,
                raw,
                {
                    "content-type": "message/rfc822",
                    "upsert": "true",
                },
            )

            admin.table(_TABLE).insert({
                "id": email_id,
                "message_id": message_id,
                "message_checksum": hashlib.sha256(raw).hexdigest(),
                "raw_email_path": storage_path,
                "byte_size": len(raw),
                "status": "pending",
                "received_at": now.isoformat(),
            }).execute()
        except Exception as e:
            logger.error(f"Failed to ingest inbound email {message_id}: {e}")
            raise IngestionError(f"Failed to ingest inbound email: {e}") from e

        logger.info(f"Ingested inbound email {message_id} as {email_id} ({len(raw):,} bytes)")
        return email_id
