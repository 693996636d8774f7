"""
email_alert.py — Email alert delivery channel.

Runs in simulation mode: the rendered message is logged, not sent. An SMTP
or provider backend plugs in behind the same ``send`` coroutine.

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: [SEVERITY] {title}
    Body:
        {message}

        Location: {lat}, {lng}
        Recommended actions:
          - {action}
          ...
        Ref: {alert_id}
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Tuple

from climarisk.alerts.models import Alert, AlertChannel
from climarisk.core.errors import AlertDeliveryError

logger = logging.getLogger(__name__)


def render_email(alert: Alert) -> Tuple[str, str]:
    """Return (subject, plain-text body)."""
    subject = f"[{alert.severity.value.upper()}] {alert.title}"
    lines: List[str] = [
        alert.message,
        "",
        f"Location: {alert.location.latitude:.2f}, {alert.location.longitude:.2f}",
    ]
    if alert.recommended_actions:
        lines.append("Recommended actions:")
        lines.extend(f"  - {a}" for a in alert.recommended_actions)
    lines.append(f"Ref: {alert.id}")
    return subject, "\n".join(lines)


class EmailSink:
    name = "email"
    channel = AlertChannel.EMAIL

    def __init__(self, address: str, history: int = 100):
        self.address = address
        # Most recent rendered messages only
        self.sent: Deque[Tuple[str, str]] = deque(maxlen=history)

    async def send(self, alert: Alert) -> None:
        if "@" not in self.address:
            raise AlertDeliveryError(alert.id, self.channel.value, f"Invalid address: {self.address}")
        subject, body = render_email(alert)
        self.sent.append((subject, body))
        logger.info(
            "[EMAIL] Alert %s → %s: '%s' (%d chars)",
            alert.id, self.address, subject, len(body),
            extra={"alert_id": alert.id, "channel": self.channel.value},
        )
