import heapq
import math
from collections import defaultdict
from datetime import date, timedelta
from itertools import count
from typing import Dict, List, Optional, Set, Tuple

import structlog

from claims_batching.allocator import AllocationState, BucketKey
from claims_batching.models import Claim, DraftBatch, InsurerConfig
from claims_batching.threshold import optimize_bucket

logger = structlog.get_logger()


def by_value_descending(claim: Claim):
    return (-claim.total_amount, claim.id)


def chunk_claims(claims: List[Claim], insurer: InsurerConfig) -> Tuple[List[DraftBatch], List[Claim]]:
    """Split claims into new batches of max(min, ceil(remaining / 2)) claims.

    A chunk is widened or narrowed when that keeps the next chunk from falling
    below the minimum. Returns the chunks and the undersized tail, if any.
    """
    low, high = insurer.min_batch_size, insurer.max_batch_size
    chunks = []
    remaining = list(claims)
    while len(remaining) >= low:
        size = min(high, max(low, math.ceil(len(remaining) / 2)))
        tail = len(remaining) - size
        if 0 < tail < low:
            if len(remaining) <= high:
                size = len(remaining)
            elif size - (low - tail) >= low:
                size -= low - tail
        chunks.append(DraftBatch(claims=remaining[:size]))
        remaining = remaining[size:]
    return chunks, remaining


def top_up(remainder: List[Claim], batches: List[DraftBatch], insurer: InsurerConfig) -> Optional[DraftBatch]:
    """Borrow claims from batches above the minimum to complete an undersized remainder."""
    needed = insurer.min_batch_size - len(remainder)
    donors = [batch for batch in batches if not batch.isolated and len(batch) > insurer.min_batch_size]
    if sum(len(batch) - insurer.min_batch_size for batch in donors) < needed:
        return None
    completed = DraftBatch(claims=list(remainder))
    while needed > 0:
        donor = max(donors, key=len)
        completed.claims.append(donor.claims.pop())
        needed -= 1
    return completed


def reconcile_bucket(batches: List[DraftBatch], insurer: InsurerConfig) -> Tuple[List[DraftBatch], List[Claim]]:
    """Repair one bucket so every batch fits the size bounds.

    Undersized and oversized batches are broken up and their claims
    redistributed. Returns the finished batches and the claims that could not
    be placed without breaking the bounds.
    """
    kept: List[DraftBatch] = []
    pending: List[Claim] = []
    for batch in batches:
        if batch.isolated or insurer.min_batch_size <= len(batch) <= insurer.max_batch_size:
            kept.append(batch)
        else:
            pending.extend(batch.claims)
    if not pending:
        return kept, []

    unplaced = []
    for claim in sorted(pending, key=by_value_descending):
        target = next(
            (batch for batch in kept if not batch.isolated and len(batch) < insurer.max_batch_size),
            None,
        )
        if target is None:
            unplaced.append(claim)
        else:
            target.claims.append(claim)

    chunks, remainder = chunk_claims(unplaced, insurer)
    kept.extend(chunks)
    if remainder:
        completed = top_up(remainder, kept, insurer)
        if completed is not None:
            kept.append(completed)
            remainder = []
    return kept, remainder


def next_day_with_capacity(state: AllocationState, after: date, needed: int, capacity: int) -> Optional[date]:
    if needed > capacity:
        return None
    for offset in count(1):
        day = after + timedelta(days=offset)
        if state.has_capacity(day, capacity, needed):
            return day
    return None


def fold_back(
    state: AllocationState,
    provider: str,
    day: date,
    claims: List[Claim],
    insurer: InsurerConfig,
) -> List[Claim]:
    """Move leftover claims into the provider's earlier batches that still have room.

    Returns the claims that found no room or no capacity.
    """
    leftover = list(claims)
    earlier = sorted((d for p, d in state.buckets if p == provider and d < day), reverse=True)
    for earlier_day in earlier:
        for batch in state.buckets[(provider, earlier_day)]:
            while (
                leftover
                and not batch.isolated
                and len(batch) < insurer.max_batch_size
                and state.has_capacity(earlier_day, insurer.daily_capacity)
            ):
                batch.claims.append(leftover.pop())
                state.release(day)
                state.reserve(earlier_day)
        if not leftover:
            break
    return leftover


def reconcile(state: AllocationState, insurer: InsurerConfig) -> AllocationState:
    """Optimize and size-repair every bucket, rolling leftovers to later days.

    Buckets are visited in date order so a rolled-over remainder always lands
    in a bucket that has not been finalized yet. A bucket holding only
    rolled-over claims keeps rolling while its provider still has a later
    bucket to merge into; past that point the remainder is folded back into
    the provider's earlier batches, and whatever still does not fit is kept
    as an undersized batch. Returns a new state; the input state is left
    untouched.
    """
    result = AllocationState(daily_counts=dict(state.daily_counts))
    allocated: Set[BucketKey] = set(state.buckets)
    provider_dates: Dict[str, List[date]] = defaultdict(list)
    for provider, day in allocated:
        provider_dates[provider].append(day)

    carried: Dict[BucketKey, List[Claim]] = {}
    queue = [(day, provider) for provider, day in allocated]
    heapq.heapify(queue)
    queued = set(allocated)

    while queue:
        day, provider = heapq.heappop(queue)
        key = (provider, day)
        batches = [DraftBatch(claims=list(batch.claims), isolated=batch.isolated) for batch in state.buckets.get(key, [])]
        incoming = carried.pop(key, [])
        if incoming:
            batches.append(DraftBatch(claims=incoming))

        kept, remainder = reconcile_bucket(optimize_bucket(batches, insurer), insurer)

        if remainder:
            may_roll = key in allocated or any(later > day for later in provider_dates[provider])
            target = next_day_with_capacity(result, day, len(remainder), insurer.daily_capacity) if may_roll else None
            if target is not None:
                result.release(day, len(remainder))
                result.reserve(target, len(remainder))
                carried.setdefault((provider, target), []).extend(remainder)
                if (provider, target) not in queued:
                    heapq.heappush(queue, (target, provider))
                    queued.add((provider, target))
                logger.info(
                    "Undersized remainder rolled over",
                    insurer_code=insurer.code,
                    provider_name=provider,
                    from_date=day.isoformat(),
                    to_date=target.isoformat(),
                    claims=len(remainder),
                )
            else:
                remainder = fold_back(result, provider, day, remainder, insurer)
                if remainder:
                    logger.warning(
                        "Keeping undersized batch",
                        insurer_code=insurer.code,
                        provider_name=provider,
                        batch_date=day.isoformat(),
                        claims=len(remainder),
                        min_batch_size=insurer.min_batch_size,
                    )
                    kept.append(DraftBatch(claims=remainder))

        if kept:
            result.buckets[key] = kept
    return result
