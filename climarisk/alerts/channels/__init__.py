"""
channels — Notification sinks.

Each sink exposes:
    name, channel
    async send(alert) → None   (raises AlertDeliveryError on failure)

Sinks are independent: a failure in one never blocks the others.
Retry and timeout policy lives in alert_service.
"""

from __future__ import annotations

from typing import List

from climarisk.alerts.channels.base import NotificationSink
from climarisk.alerts.channels.email_alert import EmailSink
from climarisk.alerts.channels.sms_gateway import SmsSink
from climarisk.alerts.channels.webhook import WebhookSink
from climarisk.alerts.models import AlertConfiguration


def build_sinks(config: AlertConfiguration) -> List[NotificationSink]:
    """One sink per configured endpoint, in webhook → email → SMS order."""
    sinks: List[NotificationSink] = []
    if config.webhook_url:
        sinks.append(WebhookSink(config.webhook_url))
    if config.email:
        sinks.append(EmailSink(config.email))
    if config.phone:
        sinks.append(SmsSink(config.phone))
    return sinks


__all__ = ["NotificationSink", "EmailSink", "SmsSink", "WebhookSink", "build_sinks"]
