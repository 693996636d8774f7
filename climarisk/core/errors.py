"""
Centralised error handling — exception hierarchy for the risk engine.

Provides:
    • Domain-specific exception classes
    • Consistent dict error format for callers that serialise errors

Recovery policy:
    ObservationError       raised by scoring; never silently zeroed
    ObservationFetchError  caught by grid/sampler → climatology fallback
    AlertDeliveryError     captured per channel in a DispatchReport
    ConfigurationError     fatal at startup
    ScoringError           invalid score or failing scoring model

Usage:
    from climarisk.core.errors import ObservationError

    raise ObservationError("Missing required observation fields", fields=["pressure"])
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RiskEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class ObservationError(RiskEngineError):
    """An observation field is missing or outside its physical range."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        fields: Optional[List[str]] = None,
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        if fields:
            d["fields"] = list(fields)
        super().__init__(message, error_code="OBSERVATION_ERROR", details=d)


class ConfigurationError(RiskEngineError):
    """Engine configuration is invalid; the engine must not start."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details)


class ObservationFetchError(RiskEngineError):
    """Upstream observation source failed or returned unusable data."""

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Observation source '{source}' failed: {message}",
            error_code="OBSERVATION_FETCH_ERROR",
            details={"source": source, **details},
        )


class ScoringError(RiskEngineError):
    """A scoring function or model produced an invalid result."""

    def __init__(self, model: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Scoring '{model}' failed: {message}",
            error_code="SCORING_ERROR",
            details={"model": model, **details},
        )


class AlertDeliveryError(RiskEngineError):
    """Alert could not be delivered on a channel."""

    def __init__(self, alert_id: str, channel: str, message: str = ""):
        super().__init__(
            message=f"Alert {alert_id} delivery failed on {channel}: {message}",
            error_code="ALERT_DELIVERY_ERROR",
            details={"alert_id": alert_id, "channel": channel},
        )
