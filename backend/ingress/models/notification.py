"""
Pydantic models for Amazon SNS notification envelopes and the SES
delivery payload they carry.

Models:
  Notification         - signed SNS envelope, as POSTed to the webhook
  StorageRef           - S3 location of an offloaded email
  DeliveryContent      - decoded SES "Received" payload
  ConfirmSubscription  - decoder output: call back SubscribeURL
  Deliver              - decoder output: hand content to ingestion
  Ignore               - decoder output: valid message, nothing to do

All models are frozen; they are built once per request and never mutated.
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# SNS envelope
# ---------------------------------------------------------------------------

class NotificationKind(str, Enum):
    SUBSCRIPTION_CONFIRMATION = "SubscriptionConfirmation"
    NOTIFICATION = "Notification"
    UNSUBSCRIBE = "UnsubscribeConfirmation"
    UNKNOWN = "Unknown"

    @classmethod
    def from_type(cls, type_name: str) -> "NotificationKind":
        try:
            return cls(type_name)
        except ValueError:
            return cls.UNKNOWN


class Notification(BaseModel):
    """
    Signed SNS envelope.

    Field names follow the Python side; aliases are the PascalCase keys SNS
    sends. Unknown keys are ignored.
    """
    model_config = {"frozen": True, "populate_by_name": True, "extra": "ignore"}

    type_name: str = Field(alias="Type")
    topic_id: str = Field(alias="TopicArn", min_length=1)
    message_id: str = Field(alias="MessageId")
    message_body: str = Field(alias="Message")
    timestamp: str = Field(alias="Timestamp")
    signature: str = Field(alias="Signature")
    signing_certificate_url: str = Field(alias="SigningCertURL")
    signature_version: str = Field(alias="SignatureVersion")
    subject: Optional[str] = Field(default=None, alias="Subject")
    confirmation_url: Optional[str] = Field(default=None, alias="SubscribeURL")
    token: Optional[str] = Field(default=None, alias="Token")
    unsubscribe_url: Optional[str] = Field(default=None, alias="UnsubscribeURL")

    @property
    def kind(self) -> NotificationKind:
        return NotificationKind.from_type(self.type_name)

    @property
    def region(self) -> Optional[str]:
        """Region part of the topic ARN (arn:aws:sns:<region>:<account>:<name>)."""
        parts = self.topic_id.split(":")
        if len(parts) < 6 or not parts[3]:
            return None
        return parts[3]


# ---------------------------------------------------------------------------
# SES delivery payload
# ---------------------------------------------------------------------------

class NotificationType(str, Enum):
    RECEIVED = "Received"
    BOUNCE = "Bounce"
    COMPLAINT = "Complaint"
    OTHER = "Other"

    @classmethod
    def from_value(cls, value: object) -> "NotificationType":
        for member in (cls.RECEIVED, cls.BOUNCE, cls.COMPLAINT):
            if value == member.value:
                return member
        return cls.OTHER


class StorageRef(BaseModel):
    model_config = {"frozen": True}

    bucket: str
    object_key: str
    region: Optional[str] = None


class DeliveryContent(BaseModel):
    """
    Email content carried by a "Received" notification.

    Small emails arrive inline; large ones are written to S3 by the SES
    receipt rule and only referenced here. Neither being set means SES gave
    us nothing to ingest.
    """
    model_config = {"frozen": True}

    notification_type: NotificationType = NotificationType.RECEIVED
    inline_content: Optional[bytes] = None
    storage_ref: Optional[StorageRef] = None

    @model_validator(mode="after")
    def _single_source(self) -> "DeliveryContent":
        if self.inline_content is not None and self.storage_ref is not None:
            raise ValueError("inline_content and storage_ref are mutually exclusive")
        return self


# ---------------------------------------------------------------------------
# Decoder output
# ---------------------------------------------------------------------------

class ConfirmSubscription(BaseModel):
    model_config = {"frozen": True}

    action: Literal["confirm"] = "confirm"
    url: str


class Deliver(BaseModel):
    model_config = {"frozen": True}

    action: Literal["deliver"] = "deliver"
    content: DeliveryContent


class Ignore(BaseModel):
    model_config = {"frozen": True}

    action: Literal["ignore"] = "ignore"
    reason: str


DecodedAction = Union[ConfirmSubscription, Deliver, Ignore]
