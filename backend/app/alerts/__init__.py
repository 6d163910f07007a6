"""
alerts — Geofencing and tourist safety alerting.

Sub-modules:
    channels/       — Per-channel delivery backends (SMS, web push, police dispatch)
    zones           — Hazard zone table and copy-on-write Zone Registry
    geo_fence       — Geofence Evaluator (first-match, night window, fail-open)
    alert_factory   — Builds panic and geofence-breach alerts
    notifier        — Notification Gateway: routing + retry
    alert_service   — Alerting Pipeline: validate → evaluate → persist → notify → audit
    models          — Data structures shared across the system
"""
