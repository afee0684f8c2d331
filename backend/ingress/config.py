"""
Ingress configuration.

All settings are read from the environment (optionally populated from a
.env file) once, into an immutable IngressSettings value that is passed
explicitly into every pipeline stage.

Environment variables
---------------------
INBOUND_INGRESS                Must be "amazon" to enable the webhook endpoint.
AMAZON_SUBSCRIBED_TOPICS       Comma-separated SNS topic ARNs to accept.
AMAZON_SIGNING_HOST_PATTERNS   Comma-separated regexes for trusted SNS hosts
                               (signing certificates and SubscribeURL).
OUTBOUND_HTTP_TIMEOUT_S        Timeout for every outbound fetch (default: 10).
CERTIFICATE_CACHE_TTL_S        Signing certificate cache lifetime (default: 3600,
                               0 disables caching).
INBOUND_EMAIL_BUCKET           Supabase Storage bucket for raw emails.
"""

import os
import re
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

AMAZON_INGRESS = "amazon"

DEFAULT_SIGNING_HOST_PATTERN = r"^sns\.[a-zA-Z0-9\-]{3,}\.amazonaws\.com(\.cn)?$"


def _split_csv(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated env value, dropping blanks."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class IngressSettings:
    ingress: str = ""
    subscribed_topics: frozenset[str] = frozenset()
    signing_host_patterns: tuple[str, ...] = (DEFAULT_SIGNING_HOST_PATTERN,)
    http_timeout_s: float = 10.0
    certificate_cache_ttl_s: float = 3600.0
    inbound_email_bucket: str = "inbound-emails"
    _compiled_host_patterns: tuple[re.Pattern, ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        # Frozen dataclass: compiled patterns are derived once here.
        object.__setattr__(
            self,
            "_compiled_host_patterns",
            tuple(re.compile(p) for p in self.signing_host_patterns),
        )

    @property
    def is_enabled(self) -> bool:
        return self.ingress == AMAZON_INGRESS

    def is_trusted_host(self, host: str | None) -> bool:
        """Return True when host fully matches one of the signing host patterns."""
        if not host:
            return False
        return any(p.fullmatch(host) for p in self._compiled_host_patterns)


def load_settings() -> IngressSettings:
    """Build IngressSettings from the current environment."""
    patterns = _split_csv(os.getenv("AMAZON_SIGNING_HOST_PATTERNS")) or (
        DEFAULT_SIGNING_HOST_PATTERN,
    )
    return IngressSettings(
        ingress=os.getenv("INBOUND_INGRESS", "").strip().lower(),
        subscribed_topics=frozenset(_split_csv(os.getenv("AMAZON_SUBSCRIBED_TOPICS"))),
        signing_host_patterns=patterns,
        http_timeout_s=float(os.getenv("OUTBOUND_HTTP_TIMEOUT_S", "10")),
        certificate_cache_ttl_s=float(os.getenv("CERTIFICATE_CACHE_TTL_S", "3600")),
        inbound_email_bucket=os.getenv("INBOUND_EMAIL_BUCKET", "inbound-emails"),
    )


@lru_cache(maxsize=1)
def get_settings() -> IngressSettings:
    """Process-wide settings, loaded on first use."""
    return load_settings()
