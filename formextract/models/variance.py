"""
Result models of the stability (variance) analysis across repeated runs.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from formextract.models.dto import FieldDescriptor


class StabilityBucket(str, Enum):
    """Share of runs in which a field was extracted."""

    STABLE = "stable"  # 100%
    MOSTLY_STABLE = "mostly_stable"  # >= 80%
    SOMEWHAT_STABLE = "somewhat_stable"  # >= 60%
    UNSTABLE = "unstable"  # >= 40%
    VERY_UNSTABLE = "very_unstable"  # < 40%


class StabilityRecord(BaseModel):
    signature: str
    field: FieldDescriptor
    appearance_count: int = Field(ge=1)
    stability: float = Field(ge=0, le=100)
    bucket: StabilityBucket
    run_numbers: list[int]


class BucketCounts(BaseModel):
    stable: int = 0
    mostly_stable: int = 0
    somewhat_stable: int = 0
    unstable: int = 0
    very_unstable: int = 0

    def add(self, bucket: StabilityBucket) -> None:
        setattr(self, bucket.value, getattr(self, bucket.value) + 1)

    @property
    def below_sixty(self) -> int:
        return self.unstable + self.very_unstable


class TypeBreakdown(BaseModel):
    type: str
    total: int
    buckets: BucketCounts
    avg_stability: float


class PageBreakdown(BaseModel):
    page_number: int
    total: int
    stable: int
    avg_stability: float


class SubgroupAnalysis(BaseModel):
    """Aggregate stability of a named subset of fields (conditional, label, ...)."""

    total: int = 0
    stable: int = 0
    stable_percentage: float | None = None
    avg_stability: float | None = None
    below_threshold: int = 0
    signatures: list[str] = []


class LowStabilityField(BaseModel):
    stability: float
    preview: str
    type: str
    page_number: int
    run_numbers: list[int]
    signature: str


class TokenStats(BaseModel):
    avg: float
    min: int
    max: int

    @property
    def spread(self) -> int:
        return self.max - self.min


class TokenUsageSummary(BaseModel):
    input: TokenStats | None = None
    output: TokenStats | None = None
    reasoning: TokenStats | None = None
    reasoning_share_of_output: float | None = None


class VarianceSummary(BaseModel):
    total_unique_fields: int
    min_field_count: int
    max_field_count: int
    avg_field_count: float
    field_count_range: int


class RecommendationKind(str, Enum):
    HIGH_PRIORITY = "high_priority"
    CONDITIONAL_FIELDS = "conditional_fields"
    LABEL_FIELDS = "label_fields"
    LOW_STABILITY_TYPE = "low_stability_type"
    GENERAL = "general"


class Recommendation(BaseModel):
    kind: RecommendationKind
    message: str
    actions: list[str] = []
    field_type: str | None = None
    avg_stability: float | None = None
    field_count: int | None = None


class VarianceReport(BaseModel):
    num_runs: int
    successful_runs: int
    failed_runs: int
    summary: VarianceSummary
    bucket_counts: BucketCounts
    type_breakdown: list[TypeBreakdown]
    page_breakdown: list[PageBreakdown]
    conditional_fields: SubgroupAnalysis
    label_fields: SubgroupAnalysis
    low_stability_fields: list[LowStabilityField]
    total_low_stability: int
    token_usage: TokenUsageSummary | None = None
    recommendations: list[Recommendation]
    records: dict[str, StabilityRecord]
