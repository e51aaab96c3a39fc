import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import structlog

from claims_batching.allocator import AllocationState, allocate
from claims_batching.cost import claim_cost
from claims_batching.dates import LAST_DAY_FACTOR, day_factor, find_optimal_dates
from claims_batching.exceptions import BatchingFailure
from claims_batching.identifier import assign_batch_ids
from claims_batching.models import Batch, BatchAssignment, BatchSummary, Claim, InsurerConfig
from claims_batching.reconciler import reconcile
from claims_batching.sorter import sort_claims
from claims_batching.store import ClaimStore


def build_buckets(claims: Iterable[Claim], insurer: InsurerConfig, pool: List[date]) -> AllocationState:
    """Sort, allocate and reconcile claims into finished (provider, date) buckets."""
    return reconcile(allocate(sort_claims(claims, insurer), insurer, pool), insurer)


def finalize_batches(state: AllocationState, insurer: InsurerConfig, taken_ids: Set[str]) -> List[Batch]:
    batches = []
    for provider, batch_date in sorted(state.buckets, key=lambda key: (key[1], key[0])):
        drafts = state.buckets[(provider, batch_date)]
        ids = assign_batch_ids(provider, batch_date, len(drafts), taken_ids)
        for batch_id, draft in zip(ids, drafts):
            batches.append(Batch(
                batch_id=batch_id,
                provider_name=provider,
                batch_date=batch_date,
                claims=list(draft.claims),
                total_value=draft.total_value,
                processing_cost=sum(claim_cost(claim, insurer, batch_date) for claim in draft.claims),
            ))
    return batches


def plan_batches(
    claims: Iterable[Claim],
    insurer: InsurerConfig,
    pool: List[date],
    taken_ids: Optional[Set[str]] = None,
) -> List[Batch]:
    """Full batch plan for one insurer without touching storage."""
    return finalize_batches(build_buckets(claims, insurer, pool), insurer, set(taken_ids or ()))


def batch_assignments(batches: Iterable[Batch]) -> List[BatchAssignment]:
    return [
        BatchAssignment(claim_id=claim.id, batch_id=batch.batch_id, batch_date=batch.batch_date)
        for batch in batches
        for claim in batch.claims
    ]


@dataclass
class RunMetrics:
    """Totals for one ``process_pending`` run."""
    insurers_processed: int = 0
    total_batches: int = 0
    total_claims: int = 0
    total_value: float = 0.0
    processing_cost: float = 0.0
    peak_cost: float = 0.0
    claims_per_date: Counter = field(default_factory=Counter)
    failures: Dict[str, BatchingFailure] = field(default_factory=dict)

    def record_batches(self, batches: List[Batch]) -> None:
        self.insurers_processed += 1
        for batch in batches:
            self.total_batches += 1
            self.total_claims += batch.claim_count
            self.total_value += batch.total_value
            self.processing_cost += batch.processing_cost
            # what the same claims would cost on the last, most expensive day of the month
            self.peak_cost += batch.processing_cost / day_factor(batch.batch_date) * LAST_DAY_FACTOR
            self.claims_per_date[batch.batch_date] += batch.claim_count

    def record_failure(self, failure: BatchingFailure) -> None:
        self.failures[failure.insurer_code] = failure

    def summary(self) -> Dict[str, Any]:
        savings = self.peak_cost - self.processing_cost
        return {
            'insurers_processed': self.insurers_processed,
            'total_batches': self.total_batches,
            'total_claims': self.total_claims,
            'avg_claims_per_batch': round(self.total_claims / self.total_batches, 1) if self.total_batches else 0,
            'total_value': round(self.total_value, 2),
            'processing_cost': round(self.processing_cost, 2),
            'peak_cost': round(self.peak_cost, 2),
            'cost_savings': round(savings, 2),
            'savings_percentage': round(savings / self.peak_cost * 100) if self.peak_cost > 0 else 0,
            'claims_per_date': {day.isoformat(): count for day, count in sorted(self.claims_per_date.items())},
            'failed_insurers': {code: failure.to_dict() for code, failure in self.failures.items()},
        }


class ClaimBatchingProcessor:
    """Batches every insurer's pending claims and commits each plan atomically."""

    def __init__(
        self,
        store: ClaimStore,
        max_concurrent_insurers: int = 4,
        clock: Callable[[], date] = date.today,
    ):
        self.store = store
        self.max_concurrent_insurers = max_concurrent_insurers
        self.clock = clock
        self.metrics = RunMetrics()
        self.logger = structlog.get_logger().bind(component="claim_batching")
        self._id_lock: Optional[asyncio.Lock] = None

    @property
    def id_lock(self) -> asyncio.Lock:
        # created lazily so the lock belongs to the running event loop
        if self._id_lock is None:
            self._id_lock = asyncio.Lock()
        return self._id_lock

    async def process_pending(self, submitted_by: Optional[str] = None) -> Dict[str, List[BatchSummary]]:
        """Batch all pending claims, optionally only those of one submitter.

        Insurers run independently: a failed insurer is rolled back, recorded in
        ``metrics.failures`` and left out of the result, and the others still
        commit. Insurers with nothing pending are left out as well.
        """
        self.metrics = RunMetrics()
        pool = find_optimal_dates(self.clock())
        codes = await self.store.list_insurer_codes()
        semaphore = asyncio.Semaphore(self.max_concurrent_insurers)

        async def run(code: str) -> List[Batch]:
            async with semaphore:
                return await self._process_isolated(code, pool, submitted_by)

        outcomes = await asyncio.gather(*(run(code) for code in codes))

        results: Dict[str, List[BatchSummary]] = {}
        for code, batches in zip(codes, outcomes):
            if batches:
                results[code] = [batch.summary() for batch in batches]
        self.logger.info(
            "Batching run finished",
            insurers=len(codes),
            batched_insurers=len(results),
            failed_insurers=sorted(self.metrics.failures),
            total_batches=self.metrics.total_batches,
        )
        return results

    async def _process_isolated(self, code: str, pool: List[date], submitted_by: Optional[str]) -> List[Batch]:
        try:
            return await self.process_insurer(code, pool, submitted_by)
        except BatchingFailure as failure:
            self.logger.error(
                "Insurer batching failed",
                insurer_code=failure.insurer_code,
                pending_count=failure.pending_count,
                error=str(failure),
            )
            self.metrics.record_failure(failure)
            return []

    async def process_insurer(self, code: str, pool: List[date], submitted_by: Optional[str] = None) -> List[Batch]:
        """Plan and commit one insurer's batches, raising BatchingFailure on any error."""
        log = self.logger.bind(insurer_code=code)
        pending_count = 0
        try:
            insurer = await self.store.get_insurer(code)
            claims = await self.store.fetch_pending_claims(code, submitted_by)
            pending_count = len(claims)
            if not claims:
                log.debug("No pending claims")
                return []

            state = build_buckets(claims, insurer, pool)
            # reading taken IDs and committing new ones is one step across insurers
            async with self.id_lock:
                taken_ids = await self.store.existing_batch_ids({batch_date for _, batch_date in state.buckets})
                batches = finalize_batches(state, insurer, taken_ids)
                await self.store.apply_batch_assignments(code, batch_assignments(batches))
        except Exception as e:
            raise BatchingFailure(
                f"Batching failed for insurer {code}: {e}",
                insurer_code=code,
                pending_count=pending_count,
            ) from e

        self.metrics.record_batches(batches)
        log.info(
            "Insurer batched",
            claims=pending_count,
            batches=len(batches),
            dates=len({batch.batch_date for batch in batches}),
        )
        return batches
