"""Fee computation strategies used when a veterinarian approves an appointment."""

import math
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from vetcare.core.exceptions import ValidationFailedException
from vetcare.schemas.appointments import AppointmentCategory
from vetcare.schemas.pricing import (
    ConsultationFactors,
    CostCalculation,
    SurgeryComplexity,
    SurgeryFactors,
    TimeOfDay,
)

CENT = Decimal("0.01")


def _money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _fmt(amount: Decimal) -> str:
    return f"${_money(amount)}"


def _percent(rate: Decimal) -> str:
    return f"{(rate * 100).normalize():f}%"


def _coerce_factors(model: type[BaseModel], factors: Any) -> Any:
    if isinstance(factors, model):
        return factors
    try:
        return model.model_validate(dict(factors or {}))
    except ValidationError as e:
        raise ValidationFailedException(f"Invalid pricing factors: {e.errors()[0]['msg']}") from e


def _validate_base(base_price: Decimal | int | str) -> Decimal:
    base = Decimal(str(base_price))
    if not base.is_finite() or base <= 0:
        raise ValidationFailedException("Base fee must be a positive amount")
    return _money(base)


class PricingStrategy(Protocol):
    """Maps a base fee and contextual factors to an itemised cost."""

    category: AppointmentCategory

    def calculate_cost(self, base_price: Decimal, factors: Any) -> CostCalculation: ...


class StandardConsultationPricing:
    """Routine visit pricing. The total never drops below half the base fee."""

    category = AppointmentCategory.CONSULTATION

    EMERGENCY_RATE = Decimal("0.5")
    EVENING_FEE = Decimal("25")
    BASELINE_MINUTES = 30
    QUANTUM_MINUTES = 15
    QUANTUM_FEE = Decimal("15")
    FOLLOW_UP_RATE = Decimal("0.2")
    DISCOUNT_TAGS = {"senior": ("Senior Discount", "Senior discount", Decimal("0.15"))}
    FLOOR_RATE = Decimal("0.5")

    def calculate_cost(
        self,
        base_price: Decimal,
        factors: ConsultationFactors | Mapping[str, Any] | None = None,
    ) -> CostCalculation:
        """
        Compute the consultation price.

        Args:
            base_price: Base consultation fee
            factors: Emergency flag, time of day, duration, follow-up and discount tags

        Returns:
            Itemised cost calculation
        """
        base = _validate_base(base_price)
        f: ConsultationFactors = _coerce_factors(ConsultationFactors, factors)

        total = base
        additional_fees: dict[str, Decimal] = {}
        discounts: dict[str, Decimal] = {}
        breakdown = [f"Base consultation: {_fmt(base)}"]

        if f.emergency:
            fee = _money(base * self.EMERGENCY_RATE)
            additional_fees["Emergency Fee"] = fee
            total += fee
            breakdown.append(f"Emergency surcharge ({_percent(self.EMERGENCY_RATE)}): {_fmt(fee)}")

        if f.time_of_day == TimeOfDay.EVENING:
            fee = _money(self.EVENING_FEE)
            additional_fees["Evening Hours"] = fee
            total += fee
            breakdown.append(f"Evening hours fee: {_fmt(fee)}")

        if f.duration_minutes and f.duration_minutes > self.BASELINE_MINUTES:
            quanta = math.ceil((f.duration_minutes - self.BASELINE_MINUTES) / self.QUANTUM_MINUTES)
            fee = _money(self.QUANTUM_FEE * quanta)
            additional_fees["Extended Time"] = fee
            total += fee
            breakdown.append(f"Extended consultation time: {_fmt(fee)}")

        if f.follow_up:
            discount = _money(base * self.FOLLOW_UP_RATE)
            discounts["Follow-up Discount"] = discount
            total -= discount
            breakdown.append(
                f"Follow-up discount ({_percent(self.FOLLOW_UP_RATE)}): -{_fmt(discount)}"
            )

        tags = {tag.strip().lower() for tag in f.discount_tags}
        for tag, (label, line, rate) in self.DISCOUNT_TAGS.items():
            if tag in tags:
                discount = _money(base * rate)
                discounts[label] = discount
                total -= discount
                breakdown.append(f"{line} ({_percent(rate)}): -{_fmt(discount)}")

        floor = _money(base * self.FLOOR_RATE)
        if total < floor:
            breakdown.append(f"Minimum charge applied: {_fmt(floor)}")

        return CostCalculation(
            base_cost=base,
            additional_fees=additional_fees,
            discounts=discounts,
            total_cost=_money(max(total, floor)),
            breakdown=breakdown,
        )


class SurgeryPricing:
    """Procedure pricing with a complexity multiplier, add-ons and insurance."""

    category = AppointmentCategory.SURGERY

    COMPLEXITY_MULTIPLIERS = {
        SurgeryComplexity.MINOR: Decimal("1"),
        SurgeryComplexity.MAJOR: Decimal("1.5"),
        SurgeryComplexity.CRITICAL: Decimal("2.5"),
    }
    ANESTHESIA_FEE = Decimal("150")
    HOSPITALIZATION_DAILY_RATE = Decimal("75")
    POST_OP_FEE = Decimal("100")

    def calculate_cost(
        self,
        base_price: Decimal,
        factors: SurgeryFactors | Mapping[str, Any] | None = None,
    ) -> CostCalculation:
        """
        Compute the surgery price.

        Insurance coverage is a percentage of the running total after every
        additive fee. The total is clamped at zero.

        Args:
            base_price: Base surgery cost
            factors: Complexity, anesthesia, hospitalization days, post-op care, insurance

        Returns:
            Itemised cost calculation
        """
        base = _validate_base(base_price)
        f: SurgeryFactors = _coerce_factors(SurgeryFactors, factors)

        total = base
        additional_fees: dict[str, Decimal] = {}
        discounts: dict[str, Decimal] = {}
        breakdown = [f"Base surgery cost: {_fmt(base)}"]

        if f.complexity:
            multiplier = self.COMPLEXITY_MULTIPLIERS[f.complexity]
            fee = _money(base * (multiplier - 1))
            if fee > 0:
                additional_fees["Complexity Fee"] = fee
                total += fee
                label = f.complexity.value.capitalize()
                breakdown.append(f"{label} surgery surcharge: {_fmt(fee)}")

        if f.anesthesia:
            fee = _money(self.ANESTHESIA_FEE)
            additional_fees["Anesthesia"] = fee
            total += fee
            breakdown.append(f"Anesthesia: {_fmt(fee)}")

        if f.hospitalization_days > 0:
            fee = _money(self.HOSPITALIZATION_DAILY_RATE * f.hospitalization_days)
            additional_fees["Hospitalization"] = fee
            total += fee
            breakdown.append(f"Hospitalization ({f.hospitalization_days} days): {_fmt(fee)}")

        if f.post_op_care:
            fee = _money(self.POST_OP_FEE)
            additional_fees["Post-Op Care"] = fee
            total += fee
            breakdown.append(f"Post-operative care: {_fmt(fee)}")

        if f.insurance_coverage > 0:
            discount = _money(total * f.insurance_coverage / 100)
            discounts["Insurance Coverage"] = discount
            total -= discount
            breakdown.append(
                f"Insurance coverage ({f.insurance_coverage.normalize():f}%): -{_fmt(discount)}"
            )

        return CostCalculation(
            base_cost=base,
            additional_fees=additional_fees,
            discounts=discounts,
            total_cost=_money(max(total, Decimal("0"))),
            breakdown=breakdown,
        )


PRICING_STRATEGIES: dict[AppointmentCategory, type[PricingStrategy]] = {
    AppointmentCategory.CONSULTATION: StandardConsultationPricing,
    AppointmentCategory.SURGERY: SurgeryPricing,
}


def get_pricing_strategy(category: AppointmentCategory | str) -> PricingStrategy:
    """
    Create the pricing strategy for an appointment category.

    Raises:
        ValidationFailedException: If the category has no strategy
    """
    try:
        key = AppointmentCategory(category)
    except ValueError:
        raise ValidationFailedException(f"Unknown appointment category: {category}") from None
    return PRICING_STRATEGIES[key]()


class PricingService:
    """Context object delegating to a swappable pricing strategy."""

    def __init__(self, strategy: PricingStrategy):
        """Initialize with a pricing strategy."""
        self.strategy = strategy

    @classmethod
    def for_category(cls, category: AppointmentCategory | str) -> "PricingService":
        """Build a service for the given appointment category."""
        return cls(get_pricing_strategy(category))

    def set_strategy(self, strategy: PricingStrategy) -> None:
        """Swap the active strategy."""
        self.strategy = strategy

    def calculate_price(self, base_price: Decimal, factors: Any = None) -> CostCalculation:
        """Compute the itemised price with the active strategy."""
        return self.strategy.calculate_cost(base_price, factors)


def time_of_day_bucket(appointment_time: str) -> TimeOfDay:
    """Bucket an ``HH:MM`` slot: before 12:00 morning, before 17:00 afternoon, else evening."""
    hour = int(appointment_time.split(":", 1)[0])
    if hour < 12:
        return TimeOfDay.MORNING
    if hour < 17:
        return TimeOfDay.AFTERNOON
    return TimeOfDay.EVENING
