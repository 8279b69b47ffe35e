"""create appointments table

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_STATUSES = "status IN ('PENDING', 'APPROVED', 'CONFIRMED')"


def upgrade() -> None:
    """Create appointments table with the active-slot unique index."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "appointments",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("owner_id", postgresql.UUID(), nullable=False),
        sa.Column("veterinarian_id", postgresql.UUID(), nullable=False),
        sa.Column("pet_id", postgresql.UUID(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.VARCHAR(length=5), nullable=False),
        sa.Column("category", sa.VARCHAR(length=30), server_default="consultation", nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="PENDING", nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("fee_breakdown", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("veterinarian_notes", sa.Text(), nullable=True),
        sa.Column("diagnosis", sa.Text(), nullable=True),
        sa.Column("treatment", sa.Text(), nullable=True),
        sa.Column("prescriptions", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "follow_up_required", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("follow_up_date", sa.Date(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("review", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column("completed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'REJECTED')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "category IN ('consultation', 'surgery')",
            name="appointments_category_check",
        ),
        sa.CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="appointments_rating_check",
        ),
        sa.CheckConstraint("fee IS NULL OR fee >= 0", name="appointments_fee_check"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "idx_appointments_owner_date", "appointments", ["owner_id", "appointment_date"]
    )
    op.create_index(
        "idx_appointments_vet_date", "appointments", ["veterinarian_id", "appointment_date"]
    )
    op.create_index("idx_appointments_pet_date", "appointments", ["pet_id", "appointment_date"])
    op.create_index("idx_appointments_status", "appointments", ["status"])

    # At most one live booking per veterinarian and slot
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["veterinarian_id", "appointment_date", "appointment_time"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUSES),
    )


def downgrade() -> None:
    """Drop appointments table."""
    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("idx_appointments_pet_date", table_name="appointments")
    op.drop_index("idx_appointments_vet_date", table_name="appointments")
    op.drop_index("idx_appointments_owner_date", table_name="appointments")
    op.drop_table("appointments")
