"""
Notification decoder.

Classifies a verified SNS envelope into the action the pipeline should take.

SES "Received" payload field assumptions
----------------------------------------
The SNS Message is itself a JSON document (double-encoded):

  notificationType       str   - "Received", "Bounce", "Complaint", ...
  content                str   - raw MIME email, present for SNS actions
  receipt.action.type    str   - "SNS" (content inline) or "S3" (offloaded)
  receipt.action.encoding         "UTF8" (default) or "BASE64" for SNS actions
  receipt.action.bucketName       S3 bucket for S3 actions
  receipt.action.objectKey        S3 key for S3 actions
  receipt.action.topicArn         topic the S3 action notified, if any

Nothing here is an error: the envelope is already authenticated, so an inner
payload we cannot read is an unsupported message, not an attack.
"""

import base64
import binascii
import json
import logging
from typing import Optional

from ingress.models.notification import (
    ConfirmSubscription,
    DecodedAction,
    Deliver,
    DeliveryContent,
    Ignore,
    Notification,
    NotificationKind,
    NotificationType,
    StorageRef,
)

logger = logging.getLogger(__name__)

MALFORMED_INNER_PAYLOAD = "malformed-inner-payload"


def decode(notification: Notification) -> DecodedAction:
    """Return the action for a verified notification."""
    kind = notification.kind

    if kind is NotificationKind.SUBSCRIPTION_CONFIRMATION:
        if not notification.confirmation_url:
            return Ignore(reason="missing-subscribe-url")
        return ConfirmSubscription(url=notification.confirmation_url)

    if kind is NotificationKind.UNSUBSCRIBE:
        return Ignore(reason="unsubscribe-confirmation")

    if kind is NotificationKind.UNKNOWN:
        return Ignore(reason=f"unknown-type:{notification.type_name}")

    return _decode_delivery(notification)


def _decode_delivery(notification: Notification) -> DecodedAction:
    try:
        message = json.loads(notification.message_body)
    except json.JSONDecodeError:
        logger.info(
            f"Ignoring notification {notification.message_id}: Message is not JSON"
        )
        return Ignore(reason=MALFORMED_INNER_PAYLOAD)

    if not isinstance(message, dict):
        return Ignore(reason=MALFORMED_INNER_PAYLOAD)

    notification_type = NotificationType.from_value(message.get("notificationType"))
    if notification_type is not NotificationType.RECEIVED:
        return Ignore(reason=f"notification-type:{message.get('notificationType')}")

    action = _receipt_action(message)

    storage_ref = _storage_ref(action, notification)
    if storage_ref is not None:
        return Deliver(content=DeliveryContent(storage_ref=storage_ref))

    content = message.get("content")
    if not isinstance(content, str) or not content:
        return Deliver(content=DeliveryContent())

    if str(action.get("encoding", "")).upper() == "BASE64":
        try:
            raw = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError):
            return Ignore(reason=MALFORMED_INNER_PAYLOAD)
    else:
        raw = content.encode("utf-8")

    return Deliver(content=DeliveryContent(inline_content=raw))


def _receipt_action(message: dict) -> dict:
    receipt = message.get("receipt")
    if not isinstance(receipt, dict):
        return {}
    action = receipt.get("action")
    return action if isinstance(action, dict) else {}


def _storage_ref(action: dict, notification: Notification) -> Optional[StorageRef]:
    if action.get("type") != "S3":
        return None

    bucket = action.get("bucketName")
    key = action.get("objectKey")
    if not isinstance(bucket, str) or not isinstance(key, str) or not bucket or not key:
        return None

    # The S3 action's own topic, when set, names the region the bucket lives in
    region = _region_from_arn(action.get("topicArn")) or notification.region
    return StorageRef(bucket=bucket, object_key=key, region=region)


def _region_from_arn(arn: object) -> Optional[str]:
    if not isinstance(arn, str):
        return None
    parts = arn.split(":")
    if len(parts) < 6 or not parts[3]:
        return None
    return parts[3]
