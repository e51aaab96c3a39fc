from datetime import date
from typing import List

import structlog

from claims_batching.dates import day_factor
from claims_batching.exceptions import CostEstimationError
from claims_batching.models import MAX_PRIORITY, MIN_PRIORITY, Claim, CostEstimate, InsurerConfig

logger = structlog.get_logger()

EARLY_MONTH_FACTOR = 0.3


def value_multiplier(total_amount: float, insurer: InsurerConfig) -> float:
    if insurer.applies_value_threshold and total_amount > insurer.claim_value_threshold:
        return insurer.claim_value_multiplier
    return 1.0


def processing_cost(
    specialty: str,
    priority_level: int,
    total_amount: float,
    insurer: InsurerConfig,
    on: date,
) -> float:
    """Estimated cost of processing one claim on a given date."""
    return (
        insurer.specialty_cost(specialty)
        * insurer.priority_multiplier(priority_level)
        * day_factor(on)
        * value_multiplier(total_amount, insurer)
    )


def claim_cost(claim: Claim, insurer: InsurerConfig, on: date) -> float:
    return processing_cost(claim.specialty, claim.priority_level, claim.total_amount, insurer, on)


def estimate_cost(
    specialty: str,
    priority_level: int,
    total_amount: float,
    insurer: InsurerConfig,
    on: date,
) -> CostEstimate:
    """Break a claim's processing cost down into its factors.

    Raises CostEstimationError for inputs a claim could never have, so callers
    decide how to present the failure instead of getting a silent zero.
    """
    if isinstance(priority_level, bool) or not isinstance(priority_level, int):
        raise CostEstimationError("Priority level must be an integer", field="priority_level")
    if not MIN_PRIORITY <= priority_level <= MAX_PRIORITY:
        raise CostEstimationError(
            f"Priority level must be between {MIN_PRIORITY} and {MAX_PRIORITY}",
            field="priority_level",
        )
    try:
        amount = float(total_amount)
    except (TypeError, ValueError) as e:
        raise CostEstimationError("Total amount must be a number", field="total_amount") from e
    if amount < 0:
        raise CostEstimationError("Total amount must be non-negative", field="total_amount")

    base_cost = insurer.specialty_cost(specialty)
    if specialty not in insurer.specialty_costs:
        logger.debug("Specialty cost not configured", insurer_code=insurer.code, specialty=specialty)
    priority_multiplier = insurer.priority_multiplier(priority_level)
    factor = day_factor(on)
    multiplier = value_multiplier(amount, insurer)

    return CostEstimate(
        base_cost=base_cost,
        priority_multiplier=priority_multiplier,
        day_factor=factor,
        value_multiplier=multiplier,
        total_cost=round(base_cost * priority_multiplier * factor * multiplier, 2),
        batching_tips=batching_tips(priority_level, amount, factor, insurer),
    )


def batching_tips(priority_level: int, total_amount: float, factor: float, insurer: InsurerConfig) -> List[str]:
    tips = []
    if priority_level >= 4:
        tips.append(
            "High priority claims take the cheapest early-month processing dates "
            "but carry a higher priority multiplier."
        )
    elif priority_level == 1:
        tips.append("Low priority claims are scheduled on the later, more expensive dates of the pool.")
    if insurer.penalizes_value_threshold and total_amount > insurer.claim_value_threshold:
        tips.append(
            f"Claim value exceeds the insurer threshold of {insurer.claim_value_threshold:.2f}; "
            f"a {insurer.claim_value_multiplier}x value multiplier applies and the claim is batched on its own."
        )
    elif insurer.penalizes_value_threshold:
        tips.append(
            f"Claims below the value threshold of {insurer.claim_value_threshold:.2f} "
            "are packed together without the value multiplier."
        )
    if factor > EARLY_MONTH_FACTOR:
        tips.append("Processing later in the month costs more; early-month dates start at a 0.2 day factor.")
    return tips
