"""
sms_gateway.py — SMS delivery channel.

Runs in simulation mode: the formatted body is logged, not sent.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    SMS (≤160 chars, GSM 7-bit):
        "[SEVERITY] {title}: {message} Ref:{alert_ref}"

    The body is truncated with "..." so prefix and suffix always fit.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque

from climarisk.alerts.models import Alert, AlertChannel
from climarisk.core.errors import AlertDeliveryError

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160


def format_sms(alert: Alert) -> str:
    """Format the SMS body within the 160-char GSM limit."""
    prefix = f"[{alert.severity.value.upper()}] {alert.title}: "
    suffix = f" Ref:{alert.id[-8:]}"
    body = alert.message

    available = SMS_MAX_GSM7 - len(prefix) - len(suffix)
    if available < 4:
        prefix = f"[{alert.severity.value.upper()}] "
        available = SMS_MAX_GSM7 - len(prefix) - len(suffix)
    if len(body) > available:
        body = body[: available - 3] + "..."

    return f"{prefix}{body}{suffix}"


class SmsSink:
    name = "sms"
    channel = AlertChannel.SMS

    def __init__(self, phone: str, history: int = 100):
        self.phone = phone
        self.sent: Deque[str] = deque(maxlen=history)

    async def send(self, alert: Alert) -> None:
        if not self.phone:
            raise AlertDeliveryError(alert.id, self.channel.value, "No phone number on file")
        body = format_sms(alert)
        self.sent.append(body)
        logger.info(
            "[SMS] Alert %s → %s: %d chars → '%s'",
            alert.id, self.phone, len(body),
            body[:80] + ("..." if len(body) > 80 else ""),
            extra={"alert_id": alert.id, "channel": self.channel.value},
        )
