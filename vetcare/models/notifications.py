"""Notification outbox for appointment lifecycle events."""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
)

metadata = MetaData()

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", Uuid, nullable=False),
    Column("appointment_id", Uuid, nullable=False),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("notification_type", String(50), nullable=False),
    Column("data", JSON, nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(
        "notification_type IN ('appointment_created', 'appointment_approved', "
        "'appointment_confirmed', 'appointment_completed', 'appointment_cancelled', "
        "'appointment_rejected', 'appointment_rescheduled', 'appointment_rated')",
        name="notifications_type_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'sent', 'failed', 'read')",
        name="notifications_status_check",
    ),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_appointment_id", "appointment_id"),
    Index("idx_notifications_user_status", "user_id", "status"),
)
