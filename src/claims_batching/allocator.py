from dataclasses import dataclass, field
from datetime import date, timedelta
from itertools import count
from typing import Dict, Iterator, List, Optional, Tuple

import structlog

from claims_batching.dates import dates_for_priority
from claims_batching.models import Claim, DraftBatch, InsurerConfig

logger = structlog.get_logger()

BucketKey = Tuple[str, date]


@dataclass
class AllocationState:
    """Mutable allocation state for one insurer run.

    Daily counts are insurer-wide: every provider draws on the same per-date
    capacity. Buckets map (provider, date) to the batches being built there.
    """
    daily_counts: Dict[date, int] = field(default_factory=dict)
    buckets: Dict[BucketKey, List[DraftBatch]] = field(default_factory=dict)

    def count_on(self, day: date) -> int:
        return self.daily_counts.get(day, 0)

    def has_capacity(self, day: date, capacity: int, needed: int = 1) -> bool:
        return self.count_on(day) + needed <= capacity

    def reserve(self, day: date, claims: int = 1) -> None:
        self.daily_counts[day] = self.count_on(day) + claims

    def release(self, day: date, claims: int = 1) -> None:
        remaining = self.count_on(day) - claims
        if remaining > 0:
            self.daily_counts[day] = remaining
        else:
            self.daily_counts.pop(day, None)

    def bucket(self, provider: str, day: date) -> List[DraftBatch]:
        return self.buckets.setdefault((provider, day), [])


def candidate_dates(pool: List[date], priority_level: int) -> Iterator[date]:
    """Dates to try for a claim, best first.

    The priority tier's slice comes first, then the rest of the pool by cost,
    then calendar days past the end of the pool. The sequence is unbounded, so
    a saturated slice never stalls allocation.
    """
    preferred = dates_for_priority(pool, priority_level)
    yield from preferred
    seen = set(preferred)
    for day in pool:
        if day not in seen:
            yield day
    last = max(pool)
    for offset in count(1):
        yield last + timedelta(days=offset)


def find_processing_date(state: AllocationState, pool: List[date], priority_level: int, capacity: int) -> date:
    for position, day in enumerate(candidate_dates(pool, priority_level)):
        if state.has_capacity(day, capacity):
            if position >= len(dates_for_priority(pool, priority_level)):
                logger.debug("Priority slice saturated", priority_level=priority_level, fallback_date=day.isoformat())
            return day
    raise AssertionError("unreachable: candidate dates are unbounded")


def crosses_threshold_early(batch: DraftBatch, claim: Claim, insurer: InsurerConfig) -> bool:
    """True when adding ``claim`` would push a still-small batch over the value threshold."""
    if not insurer.applies_value_threshold:
        return False
    if len(batch) >= insurer.min_batch_size / 2:
        return False
    threshold = insurer.claim_value_threshold
    current = batch.total_value
    return current <= threshold < current + claim.total_amount


def place_claim(bucket: List[DraftBatch], claim: Claim, insurer: InsurerConfig) -> DraftBatch:
    for batch in bucket:
        if len(batch) >= insurer.max_batch_size:
            continue
        if crosses_threshold_early(batch, claim, insurer):
            continue
        batch.claims.append(claim)
        return batch
    batch = DraftBatch(claims=[claim])
    bucket.append(batch)
    return batch


def allocate(
    sorted_groups: Dict[str, List[Claim]],
    insurer: InsurerConfig,
    pool: List[date],
    state: Optional[AllocationState] = None,
) -> AllocationState:
    """Assign every claim to a (provider, date) bucket within daily capacity."""
    state = state or AllocationState()
    for provider, claims in sorted_groups.items():
        for claim in claims:
            day = find_processing_date(state, pool, claim.priority_level, insurer.daily_capacity)
            place_claim(state.bucket(provider, day), claim, insurer)
            state.reserve(day)
    logger.debug(
        "Claims allocated",
        insurer_code=insurer.code,
        buckets=len(state.buckets),
        dates=len(state.daily_counts),
    )
    return state
