"""
webhook.py — HTTP webhook delivery channel.

Delivery mechanism:
    • POST JSON to the configured URL via httpx
    • Any 2xx response counts as delivered

═══════════════════════════════════════════════════════════════════════════
PAYLOAD
═══════════════════════════════════════════════════════════════════════════

    {
        "alert":     { ...Alert.to_dict() },
        "timestamp": "<ISO-8601 send time>",
        "source":    "climarisk"
    }
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from climarisk.alerts.models import Alert, AlertChannel
from climarisk.core.config import settings
from climarisk.core.errors import AlertDeliveryError

logger = logging.getLogger(__name__)

PAYLOAD_SOURCE = "climarisk"


def build_payload(alert: Alert) -> Dict[str, Any]:
    return {
        "alert": alert.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": PAYLOAD_SOURCE,
    }


class WebhookSink:
    """POSTs each alert as JSON to a single webhook URL."""

    name = "webhook"
    channel = AlertChannel.WEBHOOK

    def __init__(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send(self, alert: Alert) -> None:
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=build_payload(alert))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AlertDeliveryError(
                alert.id, self.channel.value,
                f"Webhook returned HTTP {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise AlertDeliveryError(alert.id, self.channel.value, str(e) or type(e).__name__) from e

        logger.info(
            "[WEBHOOK] Alert %s → %s (%d)", alert.id, self.url, response.status_code,
            extra={"alert_id": alert.id, "channel": self.channel.value},
        )
