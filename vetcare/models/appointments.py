"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    text,
)

# Metadata for all tables
metadata = MetaData()

ACTIVE_STATUSES_SQL = "status IN ('PENDING', 'APPROVED', 'CONFIRMED')"

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True),
    # Opaque references, owned by other services
    Column("owner_id", Uuid, nullable=False),
    Column("veterinarian_id", Uuid, nullable=False),
    Column("pet_id", Uuid, nullable=False),
    # Slot
    Column("appointment_date", Date, nullable=False),
    Column("appointment_time", String(5), nullable=False),
    Column("category", String(30), nullable=False, server_default="consultation"),
    # Status management
    Column("status", String(20), nullable=False, server_default="PENDING"),
    Column("reason", Text, nullable=False),
    Column("comments", Text, nullable=True),
    # Pricing, written only by approval
    Column("fee", Numeric(10, 2), nullable=True),
    Column("fee_breakdown", JSON, nullable=True),
    # Clinical fields
    Column("veterinarian_notes", Text, nullable=True),
    Column("diagnosis", Text, nullable=True),
    Column("treatment", Text, nullable=True),
    Column("prescriptions", JSON, nullable=True),
    Column("follow_up_required", Boolean, nullable=False, server_default=text("false")),
    Column("follow_up_date", Date, nullable=True),
    # Feedback
    Column("rating", Integer, nullable=True),
    Column("review", Text, nullable=True),
    # Optimistic concurrency
    Column("version", Integer, nullable=False, server_default="1"),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('PENDING', 'APPROVED', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'REJECTED')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "category IN ('consultation', 'surgery')",
        name="appointments_category_check",
    ),
    CheckConstraint(
        "rating IS NULL OR (rating >= 1 AND rating <= 5)",
        name="appointments_rating_check",
    ),
    CheckConstraint(
        "fee IS NULL OR fee >= 0",
        name="appointments_fee_check",
    ),
    Index("idx_appointments_owner_date", "owner_id", "appointment_date"),
    Index("idx_appointments_vet_date", "veterinarian_id", "appointment_date"),
    Index("idx_appointments_pet_date", "pet_id", "appointment_date"),
    Index("idx_appointments_status", "status"),
    # One live booking per veterinarian and slot
    Index(
        "uq_appointments_active_slot",
        "veterinarian_id",
        "appointment_date",
        "appointment_time",
        unique=True,
        postgresql_where=text(ACTIVE_STATUSES_SQL),
        sqlite_where=text(ACTIVE_STATUSES_SQL),
    ),
)
