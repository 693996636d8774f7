"""
alert_log.py — Append-only alert log shared by concurrent alert producers.

All mutation happens under one lock, so:
    • a batch of alerts from one evaluation is appended atomically
    • readers always see a consistent snapshot
    • deduplication is checked and recorded in the same critical section
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Sequence, Tuple

from climarisk.alerts.models import Alert


class AlertLog:
    """Ordered, lock-protected store of every alert ever generated."""

    def __init__(self, *, deduplicate: bool = True, bucket_minutes: int = 60):
        self.deduplicate = deduplicate
        self.bucket_minutes = bucket_minutes
        self._alerts: List[Alert] = []
        self._keys: Dict[Tuple[Any, ...], str] = {}
        self._lock = threading.Lock()

    def extend(self, alerts: Sequence[Alert]) -> List[Alert]:
        """
        Append a batch atomically.

        Returns
        -------
        list[Alert]
            The alerts actually appended (duplicates dropped), in input order.
        """
        added: List[Alert] = []
        with self._lock:
            for alert in alerts:
                if self.deduplicate:
                    key = alert.dedup_key(self.bucket_minutes)
                    if key in self._keys:
                        continue
                    self._keys[key] = alert.id
                self._alerts.append(alert)
                added.append(alert)
        return added

    def snapshot(self) -> List[Alert]:
        with self._lock:
            return list(self._alerts)

    def active(self, now: datetime, window: timedelta) -> List[Alert]:
        """Alerts with ``now - timestamp <= window``, oldest first."""
        cutoff = now - window
        with self._lock:
            return [a for a in self._alerts if a.timestamp >= cutoff]

    def purge(self, now: datetime, retention: timedelta) -> int:
        """Drop alerts older than ``retention``; returns how many were removed."""
        cutoff = now - retention
        with self._lock:
            kept = [a for a in self._alerts if a.timestamp >= cutoff]
            removed = len(self._alerts) - len(kept)
            if removed:
                kept_ids = {a.id for a in kept}
                self._alerts = kept
                self._keys = {k: v for k, v in self._keys.items() if v in kept_ids}
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
