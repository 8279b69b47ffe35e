"""Pricing factor and result schemas."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TimeOfDay(str, Enum):
    """Time-of-day bucket of the slot."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class SurgeryComplexity(str, Enum):
    """Surgery complexity level."""

    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class ConsultationFactors(BaseModel):
    """Factors for a routine consultation."""

    model_config = ConfigDict(extra="forbid")

    emergency: bool = False
    time_of_day: TimeOfDay | None = None
    duration_minutes: int | None = Field(None, ge=0, le=24 * 60)
    follow_up: bool = False
    discount_tags: list[str] = Field(default_factory=list)


class SurgeryFactors(BaseModel):
    """Factors for a procedure or surgery."""

    model_config = ConfigDict(extra="forbid")

    complexity: SurgeryComplexity | None = None
    anesthesia: bool = False
    hospitalization_days: int = Field(default=0, ge=0, le=365)
    post_op_care: bool = False
    insurance_coverage: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    # Accepted so callers can pass the slot bucket uniformly; surgery ignores it
    time_of_day: TimeOfDay | None = None


class CostCalculation(BaseModel):
    """Itemised price computed at approval."""

    model_config = ConfigDict(frozen=True)

    base_cost: Decimal
    additional_fees: dict[str, Decimal] = Field(default_factory=dict)
    discounts: dict[str, Decimal] = Field(default_factory=dict)
    total_cost: Decimal
    breakdown: list[str] = Field(default_factory=list)
