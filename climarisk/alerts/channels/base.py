"""
base.py — The notification sink protocol.
"""

from __future__ import annotations

from typing import Protocol

from climarisk.alerts.models import Alert, AlertChannel


class NotificationSink(Protocol):
    """A delivery endpoint for alerts."""

    name: str
    channel: AlertChannel

    async def send(self, alert: Alert) -> None:
        """Deliver one alert; raise AlertDeliveryError on failure."""
        ...
