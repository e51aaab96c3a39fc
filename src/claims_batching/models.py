from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_SPECIALTY_COST = 100.0
DEFAULT_PRIORITY_MULTIPLIER = 1.0
MIN_PRIORITY = 1
MAX_PRIORITY = 5


class ClaimStatus(str, Enum):
    PENDING = "pending"
    BATCHED = "batched"


class DatePreference(str, Enum):
    ENCOUNTER_DATE = "encounter_date"
    SUBMISSION_DATE = "submission_date"


class Claim(BaseModel):
    """A submitted claim as seen by the batching engine."""
    id: int
    insurer_code: str
    provider_name: str
    specialty: str
    priority_level: int = 3
    encounter_date: date
    submission_date: date
    total_amount: float
    submitted_by: Optional[str] = None
    batch_id: Optional[str] = None
    batch_date: Optional[date] = None
    is_batched: bool = False
    status: ClaimStatus = ClaimStatus.PENDING

    @field_validator('total_amount')
    def validate_total_amount(cls, value):
        if value < 0:
            raise ValueError('Total amount must be non-negative')
        return value

    @property
    def is_pending(self) -> bool:
        return self.status == ClaimStatus.PENDING and not self.is_batched

    def preferred_date(self, preference: DatePreference) -> date:
        if DatePreference(preference) == DatePreference.ENCOUNTER_DATE:
            return self.encounter_date
        return self.submission_date


class InsurerConfig(BaseModel):
    """Per-insurer batching constraints and cost tables."""
    code: str
    name: str = ""
    daily_capacity: int = Field(default=100, ge=1)
    min_batch_size: int = Field(default=5, ge=1)
    max_batch_size: int = Field(default=50, ge=1)
    date_preference: DatePreference = DatePreference.SUBMISSION_DATE
    specialty_costs: Dict[str, float] = Field(default_factory=dict)
    priority_multipliers: Dict[int, float] = Field(default_factory=dict)
    claim_value_threshold: float = 1000.0
    claim_value_multiplier: float = 1.2

    @field_validator('specialty_costs', 'priority_multipliers', mode='before')
    def empty_mapping_for_null(cls, value):
        # JSON columns come back as NULL when the insurer never configured them
        return value or {}

    @model_validator(mode='after')
    def validate_batch_bounds(self):
        if self.max_batch_size < self.min_batch_size:
            raise ValueError('max_batch_size must be greater than or equal to min_batch_size')
        return self

    def specialty_cost(self, specialty: str) -> float:
        """Base cost for a specialty, 100.0 when the insurer has no entry for it."""
        return float(self.specialty_costs.get(specialty, DEFAULT_SPECIALTY_COST))

    def priority_multiplier(self, priority_level: int) -> float:
        """Multiplier for a priority level clamped to 1-5, 1.0 when unmapped."""
        level = min(max(int(priority_level), MIN_PRIORITY), MAX_PRIORITY)
        return float(self.priority_multipliers.get(level, DEFAULT_PRIORITY_MULTIPLIER))

    @property
    def applies_value_threshold(self) -> bool:
        return self.claim_value_threshold > 0

    @property
    def penalizes_value_threshold(self) -> bool:
        return self.applies_value_threshold and self.claim_value_multiplier > 1.0


@dataclass
class DraftBatch:
    """An in-progress batch inside a (provider, date) bucket."""
    claims: List[Claim] = field(default_factory=list)
    isolated: bool = False

    def __len__(self) -> int:
        return len(self.claims)

    @property
    def total_value(self) -> float:
        return sum(claim.total_amount for claim in self.claims)


@dataclass
class Batch:
    batch_id: str
    provider_name: str
    batch_date: date
    claims: List[Claim]
    total_value: float
    processing_cost: float

    @property
    def claim_count(self) -> int:
        return len(self.claims)

    def summary(self) -> 'BatchSummary':
        return BatchSummary(
            batch_id=self.batch_id,
            provider_name=self.provider_name,
            date=self.batch_date,
            claim_count=self.claim_count,
            total_value=round(self.total_value, 2),
            processing_cost=round(self.processing_cost, 2),
        )


@dataclass
class BatchSummary:
    batch_id: str
    provider_name: str
    date: date
    claim_count: int
    total_value: float
    processing_cost: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "provider_name": self.provider_name,
            "date": self.date.isoformat(),
            "claim_count": self.claim_count,
            "total_value": self.total_value,
            "processing_cost": self.processing_cost,
        }


@dataclass(frozen=True)
class BatchAssignment:
    """The batching fields written back for one claim."""
    claim_id: int
    batch_id: str
    batch_date: date


@dataclass
class CostEstimate:
    base_cost: float
    priority_multiplier: float
    day_factor: float
    value_multiplier: float
    total_cost: float
    batching_tips: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "baseCost": self.base_cost,
            "priorityMultiplier": self.priority_multiplier,
            "dayFactor": self.day_factor,
            "valueMultiplier": self.value_multiplier,
            "totalCost": self.total_cost,
            "batchingTips": list(self.batching_tips),
        }
