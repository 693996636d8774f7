"""
alerts — Threshold-driven alert generation, deduplication and dispatch.

Modules:
    models          Alert, DispatchReport, tracking inputs, AlertConfiguration
    alert_log       Thread-safe append-only alert log with dedup
    alert_service   AlertManager: threshold evaluation and concurrent dispatch
    channels        Notification sinks (webhook, email, SMS)
"""
