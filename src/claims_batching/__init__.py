from .cost import estimate_cost
from .dates import day_factor, find_optimal_dates
from .exceptions import BatchingError, BatchingFailure, ConfigurationError, CostEstimationError, StorageFailure
from .models import Batch, BatchSummary, Claim, ClaimStatus, CostEstimate, DatePreference, InsurerConfig
from .processor import ClaimBatchingProcessor, plan_batches
from .store import ClaimStore, InMemoryClaimStore, PostgresClaimStore

__all__ = [
    'Batch', 'BatchSummary', 'BatchingError', 'BatchingFailure', 'Claim', 'ClaimBatchingProcessor',
    'ClaimStatus', 'ClaimStore', 'ConfigurationError', 'CostEstimate', 'CostEstimationError',
    'DatePreference', 'InMemoryClaimStore', 'InsurerConfig', 'PostgresClaimStore', 'StorageFailure',
    'day_factor', 'estimate_cost', 'find_optimal_dates', 'plan_batches',
]
