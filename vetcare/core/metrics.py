"""Prometheus metrics for the appointment engine."""

from prometheus_client import Counter

APPOINTMENT_TRANSITIONS = Counter(
    "vetcare_appointment_transitions_total",
    "Committed appointment transitions",
    ["action", "to_status"],
)

APPOINTMENT_FAILURES = Counter(
    "vetcare_appointment_failures_total",
    "Rejected appointment operations by error kind",
    ["action", "error"],
)

NOTIFICATION_FAILURES = Counter(
    "vetcare_notification_failures_total",
    "Lifecycle events the notifier failed to accept",
    ["event_type"],
)
