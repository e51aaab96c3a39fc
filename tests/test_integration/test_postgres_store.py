from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from claims_batching.exceptions import ConfigurationError, StorageFailure
from claims_batching.models import BatchAssignment, ClaimStatus, DatePreference
from claims_batching.store import PostgresClaimStore, claim_from_row, insurer_from_row

INSURER_ROW = {
    'id': 1,
    'name': 'Acme Health',
    'code': 'ACME',
    'daily_capacity': 100,
    'min_batch_size': 5,
    'max_batch_size': 50,
    'date_preference': 'encounter_date',
    'specialty_costs': '{"Cardiology": 150.0, "Dermatology": 100.0}',
    'priority_multipliers': '{"1": 1.0, "5": 2.0}',
    'claim_value_threshold': Decimal('1000.00'),
    'claim_value_multiplier': 1.5,
}

CLAIM_ROW = {
    'id': 42,
    'insurer_code': 'ACME',
    'insurer_id': 1,
    'submitted_by': 'user-1',
    'provider_name': 'General Hospital',
    'encounter_date': date(2025, 4, 2),
    'submission_date': date(2025, 4, 3),
    'priority_level': 4,
    'specialty': 'Cardiology',
    'total_amount': Decimal('1234.50'),
    'batch_id': None,
    'is_batched': False,
    'batch_date': None,
    'status': 'pending',
}


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.fetch = AsyncMock(return_value=[])
    connection.execute = AsyncMock(return_value="UPDATE 0")
    return connection


@pytest.fixture
def pool(conn):
    db_pool = MagicMock()
    db_pool.acquire.return_value.__aenter__.return_value = conn
    db_pool.close = AsyncMock()
    return db_pool


@pytest.fixture
def pg_store(pool):
    return PostgresClaimStore(pool, read_retry_attempts=3, retry_wait=0)


def assignments(count):
    return [
        BatchAssignment(claim_id=i, batch_id="General Hospital Apr 1 2025", batch_date=date(2025, 4, 1))
        for i in range(1, count + 1)
    ]


class TestRowMapping:
    def test_insurer_from_row_decodes_json_columns(self):
        insurer = insurer_from_row(INSURER_ROW)

        assert insurer.code == 'ACME'
        assert insurer.date_preference == DatePreference.ENCOUNTER_DATE
        assert insurer.specialty_cost('Cardiology') == 150.0
        assert insurer.priority_multiplier(5) == 2.0
        assert insurer.claim_value_threshold == 1000.0

    def test_insurer_from_row_accepts_decoded_json_and_nulls(self):
        row = dict(INSURER_ROW, specialty_costs={'Cardiology': 90.0}, priority_multipliers=None)

        insurer = insurer_from_row(row)

        assert insurer.specialty_cost('Cardiology') == 90.0
        assert insurer.priority_multiplier(3) == 1.0

    def test_invalid_insurer_row_raises_configuration_error(self):
        row = dict(INSURER_ROW, min_batch_size=20, max_batch_size=10)

        with pytest.raises(ConfigurationError):
            insurer_from_row(row)

    def test_claim_from_row(self):
        claim = claim_from_row(CLAIM_ROW)

        assert claim.id == 42
        assert claim.total_amount == 1234.5
        assert claim.status == ClaimStatus.PENDING
        assert claim.is_pending


@pytest.mark.asyncio
class TestReads:
    async def test_list_insurer_codes(self, pg_store, conn):
        conn.fetch.return_value = [{'code': 'ACME'}, {'code': 'GLOBEX'}]

        assert await pg_store.list_insurer_codes() == ['ACME', 'GLOBEX']

    async def test_get_insurer(self, pg_store, conn):
        conn.fetch.return_value = [INSURER_ROW]

        insurer = await pg_store.get_insurer('ACME')

        assert insurer.code == 'ACME'
        assert conn.fetch.await_args.args[1] == 'ACME'

    async def test_missing_insurer(self, pg_store, conn):
        conn.fetch.return_value = []

        with pytest.raises(StorageFailure):
            await pg_store.get_insurer('NOPE')

    async def test_fetch_pending_claims_filters_submitter(self, pg_store, conn):
        conn.fetch.return_value = [CLAIM_ROW]

        claims = await pg_store.fetch_pending_claims('ACME', submitted_by='user-1')

        assert [claim.id for claim in claims] == [42]
        query, *args = conn.fetch.await_args.args
        assert args == ['ACME', 'user-1']
        assert 'c.submitted_by = $2' in query

    async def test_existing_batch_ids(self, pg_store, conn):
        conn.fetch.return_value = [{'batch_id': 'General Hospital Apr 1 2025'}]

        taken = await pg_store.existing_batch_ids([date(2025, 4, 1), date(2025, 4, 1)])

        assert taken == {'General Hospital Apr 1 2025'}
        assert conn.fetch.await_args.args[1] == [date(2025, 4, 1)]

    async def test_transient_read_errors_are_retried(self, pg_store, conn):
        conn.fetch.side_effect = [OSError("connection refused"), [{'code': 'ACME'}]]

        assert await pg_store.list_insurer_codes() == ['ACME']
        assert conn.fetch.await_count == 2

    async def test_read_gives_up_after_retries(self, pg_store, conn):
        conn.fetch.side_effect = OSError("connection refused")

        with pytest.raises(StorageFailure):
            await pg_store.list_insurer_codes()
        assert conn.fetch.await_count == 3


@pytest.mark.asyncio
class TestCommit:
    async def test_applies_all_assignments_in_one_statement(self, pg_store, conn):
        conn.execute.return_value = "UPDATE 3"

        updated = await pg_store.apply_batch_assignments('ACME', assignments(3))

        assert updated == 3
        conn.transaction.assert_called_once()
        conn.execute.assert_awaited_once()
        _, claim_ids, batch_ids, batch_dates, code = conn.execute.await_args.args
        assert claim_ids == [1, 2, 3]
        assert len(batch_ids) == len(batch_dates) == 3
        assert code == 'ACME'

    async def test_partial_update_rolls_back(self, pg_store, conn):
        conn.execute.return_value = "UPDATE 2"

        with pytest.raises(StorageFailure):
            await pg_store.apply_batch_assignments('ACME', assignments(3))

    async def test_connection_error_becomes_storage_failure(self, pg_store, conn):
        conn.execute.side_effect = OSError("connection reset")

        with pytest.raises(StorageFailure):
            await pg_store.apply_batch_assignments('ACME', assignments(1))

    async def test_nothing_to_commit(self, pg_store, conn):
        assert await pg_store.apply_batch_assignments('ACME', []) == 0
        conn.execute.assert_not_awaited()

    async def test_close_closes_pool(self, pg_store, pool):
        await pg_store.close()
        pool.close.assert_awaited_once()


@pytest.mark.asyncio
class TestSchema:
    async def test_initialize_schema_creates_tables(self, pg_store, conn):
        await pg_store.initialize_schema()

        ddl = conn.execute.await_args.args[0]
        assert 'CREATE TABLE IF NOT EXISTS insurers' in ddl
        assert 'CREATE TABLE IF NOT EXISTS claims' in ddl

    async def test_initialize_schema_failure(self, pg_store, conn):
        conn.execute.side_effect = OSError("connection refused")

        with pytest.raises(StorageFailure):
            await pg_store.initialize_schema()
