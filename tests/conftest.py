import sys
from datetime import date
from pathlib import Path

import factory
import pytest
import structlog

# Add src to Python path
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from claims_batching.models import Claim, InsurerConfig  # noqa: E402
from claims_batching.processor import ClaimBatchingProcessor  # noqa: E402
from claims_batching.store import InMemoryClaimStore  # noqa: E402

# April 2025 has 30 days, so day factors are easy to reason about
TODAY = date(2025, 4, 10)
PROVIDERS = ["Provider A", "Provider B", "Provider C"]
PRIORITIES = [1, 2, 3, 4, 5]


class InsurerFactory(factory.Factory):
    class Meta:
        model = InsurerConfig

    code = "TEST"
    name = "Test Insurer"
    daily_capacity = 10
    min_batch_size = 3
    max_batch_size = 5
    date_preference = "encounter_date"
    specialty_costs = factory.LazyFunction(lambda: {"Cardiology": 100.0, "Orthopedics": 150.0, "Pediatrics": 80.0})
    priority_multipliers = factory.LazyFunction(lambda: {1: 0.8, 2: 0.9, 3: 1.0, 4: 1.2, 5: 1.5})
    claim_value_threshold = 2000.0
    claim_value_multiplier = 1.2


class ClaimFactory(factory.Factory):
    class Meta:
        model = Claim

    id = factory.Sequence(lambda n: n + 1)
    insurer_code = "TEST"
    provider_name = "General Hospital"
    specialty = "Cardiology"
    priority_level = 3
    encounter_date = factory.Sequence(lambda n: date(2025, 4, 1 + n % 9))
    submission_date = TODAY
    total_amount = factory.Sequence(lambda n: float(500 + (n * 137) % 1000))
    submitted_by = "user-1"


@pytest.fixture(autouse=True)
def structlog_to_stdlib():
    """Send structlog events through stdlib logging so they never reach stdout."""
    structlog.configure(
        processors=[structlog.stdlib.add_log_level, structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def reset_factories():
    ClaimFactory.reset_sequence()
    yield


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def insurer_factory():
    return InsurerFactory


@pytest.fixture
def insurer():
    return InsurerFactory()


@pytest.fixture
def claim_factory():
    return ClaimFactory


@pytest.fixture
def make_claims():
    """Claims spread over providers and priorities the way daily submissions arrive."""
    def _make_claims(count: int, providers=None, **overrides):
        providers = providers or PROVIDERS
        claims = []
        for i in range(count):
            fields = {
                "provider_name": providers[i % len(providers)],
                "priority_level": PRIORITIES[i % len(PRIORITIES)],
            }
            fields.update(overrides)
            claims.append(ClaimFactory(**fields))
        return claims
    return _make_claims


@pytest.fixture
def store(insurer):
    return InMemoryClaimStore(insurers=[insurer])


@pytest.fixture
def processor(store):
    return ClaimBatchingProcessor(store, clock=lambda: TODAY)
