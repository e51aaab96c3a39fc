"""Claim and insurer storage behind the batching engine.

The engine reads everything up front and writes once at the end, so a store
only has to answer three queries and apply one atomic write per insurer.
"""
import json
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

import asyncpg
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from claims_batching.exceptions import ConfigurationError, StorageFailure
from claims_batching.models import BatchAssignment, Claim, ClaimStatus, InsurerConfig
from claims_batching.settings import Settings

RETRYABLE_ERRORS = (asyncpg.PostgresConnectionError, asyncpg.InterfaceError, OSError)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS insurers (
    id BIGSERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    code VARCHAR(50) NOT NULL UNIQUE,
    daily_capacity INTEGER NOT NULL DEFAULT 100,
    min_batch_size INTEGER NOT NULL DEFAULT 5,
    max_batch_size INTEGER NOT NULL DEFAULT 50,
    date_preference VARCHAR(20) NOT NULL DEFAULT 'submission_date',
    specialty_costs JSONB,
    priority_multipliers JSONB,
    claim_value_threshold NUMERIC(10, 2) NOT NULL DEFAULT 1000.00,
    claim_value_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.2,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT valid_date_preference CHECK (
        date_preference IN ('encounter_date', 'submission_date')
    )
);

CREATE TABLE IF NOT EXISTS claims (
    id BIGSERIAL PRIMARY KEY,
    insurer_id BIGINT NOT NULL REFERENCES insurers(id),
    submitted_by VARCHAR(50),
    provider_name VARCHAR(255) NOT NULL,
    encounter_date DATE NOT NULL,
    submission_date DATE NOT NULL,
    priority_level INTEGER NOT NULL,
    specialty VARCHAR(100) NOT NULL,
    total_amount NUMERIC(10, 2) NOT NULL,
    batch_id VARCHAR(255),
    is_batched BOOLEAN NOT NULL DEFAULT false,
    batch_date DATE,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_claims_pending
    ON claims(insurer_id, status, is_batched)
    INCLUDE (submitted_by);

CREATE INDEX IF NOT EXISTS idx_claims_batch
    ON claims(batch_date, batch_id);
"""


class ClaimStore(ABC):
    """Storage contract used by the batching processor."""

    @abstractmethod
    async def list_insurer_codes(self) -> List[str]:
        ...

    @abstractmethod
    async def get_insurer(self, code: str) -> InsurerConfig:
        ...

    @abstractmethod
    async def fetch_pending_claims(self, insurer_code: str, submitted_by: Optional[str] = None) -> List[Claim]:
        """Claims with status pending that are not yet batched, ordered by id."""

    @abstractmethod
    async def existing_batch_ids(self, dates: Iterable[date]) -> Set[str]:
        """Batch IDs already committed on any of the given dates."""

    @abstractmethod
    async def apply_batch_assignments(self, insurer_code: str, assignments: List[BatchAssignment]) -> int:
        """Write all assignments in one transaction or none of them."""

    async def close(self) -> None:
        pass


class InMemoryClaimStore(ClaimStore):
    """Dict-backed store for tests and dry runs."""

    def __init__(self, insurers: Iterable[InsurerConfig] = (), claims: Iterable[Claim] = ()):
        self._insurers: Dict[str, InsurerConfig] = {}
        self._claims: Dict[int, Claim] = {}
        for insurer in insurers:
            self.add_insurer(insurer)
        for claim in claims:
            self.add_claim(claim)

    def add_insurer(self, insurer: InsurerConfig) -> None:
        self._insurers[insurer.code] = insurer

    def add_claim(self, claim: Claim) -> None:
        self._claims[claim.id] = claim.model_copy()

    def get_claim(self, claim_id: int) -> Claim:
        return self._claims[claim_id].model_copy()

    @property
    def claims(self) -> List[Claim]:
        return [self._claims[claim_id].model_copy() for claim_id in sorted(self._claims)]

    async def list_insurer_codes(self) -> List[str]:
        return list(self._insurers)

    async def get_insurer(self, code: str) -> InsurerConfig:
        try:
            return self._insurers[code]
        except KeyError:
            raise StorageFailure(f"Insurer {code} not found") from None

    async def fetch_pending_claims(self, insurer_code: str, submitted_by: Optional[str] = None) -> List[Claim]:
        return [
            claim.model_copy()
            for claim in self.claims
            if claim.insurer_code == insurer_code
            and claim.is_pending
            and (submitted_by is None or claim.submitted_by == submitted_by)
        ]

    async def existing_batch_ids(self, dates: Iterable[date]) -> Set[str]:
        wanted = set(dates)
        return {
            claim.batch_id
            for claim in self._claims.values()
            if claim.batch_id and claim.batch_date in wanted
        }

    async def apply_batch_assignments(self, insurer_code: str, assignments: List[BatchAssignment]) -> int:
        updated: Dict[int, Claim] = {}
        for assignment in assignments:
            claim = self._claims.get(assignment.claim_id)
            if claim is None:
                raise StorageFailure(f"Claim {assignment.claim_id} not found")
            if claim.insurer_code != insurer_code:
                raise StorageFailure(f"Claim {assignment.claim_id} does not belong to insurer {insurer_code}")
            if not claim.is_pending or assignment.claim_id in updated:
                raise StorageFailure(f"Claim {assignment.claim_id} is already batched")
            updated[assignment.claim_id] = claim.model_copy(update={
                "batch_id": assignment.batch_id,
                "batch_date": assignment.batch_date,
                "is_batched": True,
                "status": ClaimStatus.BATCHED,
            })
        # every assignment validated; nothing above touched stored claims
        self._claims.update(updated)
        return len(updated)


class PostgresClaimStore(ClaimStore):
    """asyncpg-backed store over the ``insurers`` and ``claims`` tables."""

    def __init__(self, pool: asyncpg.Pool, read_retry_attempts: int = 3, retry_wait: float = 1.0):
        self.pool = pool
        self.read_retry_attempts = read_retry_attempts
        self.retry_wait = retry_wait
        self.logger = structlog.get_logger().bind(store="postgres")

    @classmethod
    async def create(cls, settings: Settings) -> 'PostgresClaimStore':
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_min_connections,
            max_size=settings.db_max_connections,
            command_timeout=settings.db_command_timeout,
            server_settings={
                'timezone': 'UTC',
                'application_name': 'claims_batching',
            }
        )
        return cls(pool, read_retry_attempts=settings.read_retry_attempts)

    async def close(self) -> None:
        await self.pool.close()

    async def initialize_schema(self) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except (asyncpg.PostgresError, *RETRYABLE_ERRORS) as e:
            self.logger.error("Schema initialization failed", error=str(e))
            raise StorageFailure("Failed to initialize schema") from e

    async def _read(self, operation: str, query: str, *args: Any) -> List[asyncpg.Record]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.read_retry_attempts),
                wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=10 * self.retry_wait),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                reraise=True,
            ):
                with attempt:
                    async with self.pool.acquire() as conn:
                        return await conn.fetch(query, *args)
        except (asyncpg.PostgresError, *RETRYABLE_ERRORS) as e:
            self.logger.error("Store read failed", operation=operation, error=str(e))
            raise StorageFailure(f"Failed to {operation}") from e

    async def list_insurer_codes(self) -> List[str]:
        rows = await self._read("list insurers", "SELECT code FROM insurers ORDER BY id")
        return [row['code'] for row in rows]

    async def get_insurer(self, code: str) -> InsurerConfig:
        rows = await self._read("load insurer", "SELECT * FROM insurers WHERE code = $1", code)
        if not rows:
            raise StorageFailure(f"Insurer {code} not found")
        return insurer_from_row(rows[0])

    async def fetch_pending_claims(self, insurer_code: str, submitted_by: Optional[str] = None) -> List[Claim]:
        query = """
            SELECT c.*, i.code AS insurer_code
            FROM claims c
            JOIN insurers i ON i.id = c.insurer_id
            WHERE i.code = $1
              AND c.status = 'pending'
              AND c.is_batched = false
        """
        args: List[Any] = [insurer_code]
        if submitted_by is not None:
            query += " AND c.submitted_by = $2"
            args.append(submitted_by)
        query += " ORDER BY c.id"
        rows = await self._read("fetch pending claims", query, *args)
        return [claim_from_row(row) for row in rows]

    async def existing_batch_ids(self, dates: Iterable[date]) -> Set[str]:
        rows = await self._read(
            "load batch ids",
            """
            SELECT DISTINCT batch_id
            FROM claims
            WHERE batch_date = ANY($1::date[])
              AND batch_id IS NOT NULL
            """,
            sorted(set(dates)),
        )
        return {row['batch_id'] for row in rows}

    async def apply_batch_assignments(self, insurer_code: str, assignments: List[BatchAssignment]) -> int:
        if not assignments:
            return 0
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute("""
                        UPDATE claims AS c
                        SET batch_id = a.batch_id,
                            batch_date = a.batch_date,
                            is_batched = true,
                            status = 'batched',
                            updated_at = CURRENT_TIMESTAMP
                        FROM unnest($1::bigint[], $2::text[], $3::date[]) AS a(claim_id, batch_id, batch_date)
                        WHERE c.id = a.claim_id
                          AND c.insurer_id = (SELECT id FROM insurers WHERE code = $4)
                          AND c.is_batched = false
                          AND c.status = 'pending'
                    """,
                        [a.claim_id for a in assignments],
                        [a.batch_id for a in assignments],
                        [a.batch_date for a in assignments],
                        insurer_code
                    )
                    updated = int(status.split()[-1])
                    if updated != len(assignments):
                        # raising inside the transaction block rolls every update back
                        raise StorageFailure(
                            f"Expected to batch {len(assignments)} claims but {updated} were still pending"
                        )
        except (asyncpg.PostgresError, *RETRYABLE_ERRORS) as e:
            self.logger.error("Batch commit failed", insurer_code=insurer_code, error=str(e))
            raise StorageFailure(f"Failed to commit batches for insurer {insurer_code}") from e
        self.logger.info("Batch assignments committed", insurer_code=insurer_code, claims=updated)
        return updated


def _json_column(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def insurer_from_row(row: Any) -> InsurerConfig:
    data = dict(row)
    try:
        return InsurerConfig(
            code=data['code'],
            name=data.get('name') or "",
            daily_capacity=data['daily_capacity'],
            min_batch_size=data['min_batch_size'],
            max_batch_size=data['max_batch_size'],
            date_preference=data['date_preference'],
            specialty_costs=_json_column(data.get('specialty_costs')),
            priority_multipliers=_json_column(data.get('priority_multipliers')),
            claim_value_threshold=float(data['claim_value_threshold']),
            claim_value_multiplier=float(data['claim_value_multiplier']),
        )
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration for insurer {data.get('code')}: {e}") from e


def claim_from_row(row: Any) -> Claim:
    data = dict(row)
    return Claim(
        id=data['id'],
        insurer_code=data['insurer_code'],
        provider_name=data['provider_name'],
        specialty=data['specialty'],
        priority_level=data['priority_level'],
        encounter_date=data['encounter_date'],
        submission_date=data['submission_date'],
        total_amount=float(data['total_amount']),
        submitted_by=data.get('submitted_by'),
        batch_id=data.get('batch_id'),
        batch_date=data.get('batch_date'),
        is_batched=data['is_batched'],
        status=data['status'],
    )
