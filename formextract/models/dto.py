"""
Typed contracts passed between the planner, extractor adapter and merger.
"""

from __future__ import annotations

import base64
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from formextract.core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_EXTRACTION_CONCURRENCY,
    DEFAULT_FIELD_TYPE,
    DEFAULT_PAGE_NUMBER,
)


class PageImage(BaseModel):
    """One rasterized page of a source document."""

    page_number: int = Field(ge=1)
    url: str | None = None
    data: bytes | None = None
    mime_type: str = "image/png"

    def as_image_url(self) -> str:
        """Return a URL the upstream can fetch, inlining raw bytes as a data URL."""
        if self.url:
            return self.url
        if self.data is None:
            raise ValueError(f"Page {self.page_number} has neither url nor data")
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


class Document(BaseModel):
    """Opaque document handle with its ordered page images."""

    document_id: str
    pages: list[PageImage] = []

    @property
    def total_pages(self) -> int:
        return len(self.pages)


class Batch(BaseModel):
    """Contiguous global page range analysed in one upstream call."""

    index: int = Field(ge=0)
    start_page: int = Field(ge=1)
    end_page: int = Field(ge=1)
    images: list[PageImage] = []

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1


class BatchPlan(BaseModel):
    total_pages: int
    batching_enabled: bool
    effective_batch_size: int
    batches: list[Batch]

    @property
    def batch_count(self) -> int:
        return len(self.batches)


class FieldDescriptor(BaseModel):
    """
    One detected form element (input, label or rich-text block).

    Upstream JSON uses camelCase keys; attributes are snake_case. Keys the
    model does not know about are preserved so that nothing the extractor
    reports is silently dropped.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    label: str = ""
    type: str = DEFAULT_FIELD_TYPE
    required: bool = False
    placeholder: str | None = None
    options: list[str] = []
    allow_other: bool = False
    other_label: str | None = None
    other_placeholder: str | None = None
    confidence: float | None = None
    page_number: int = DEFAULT_PAGE_NUMBER
    rich_text_content: str | None = None
    rich_text_max_height: int | None = None

    @field_validator("label", mode="before")
    @classmethod
    def _label_to_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("type", mode="before")
    @classmethod
    def _type_to_str(cls, value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_FIELD_TYPE
        return str(value).strip()

    @field_validator("options", mode="before")
    @classmethod
    def _options_to_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            return [str(value)]
        return [str(opt) for opt in value if opt is not None]

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            conf = float(value)
        except (TypeError, ValueError):
            return None
        if conf != conf:  # NaN
            return None
        return min(max(conf, 0.0), 1.0)

    @field_validator("page_number", mode="before")
    @classmethod
    def _coerce_page_number(cls, value: Any) -> int:
        if value is None or isinstance(value, bool):
            return DEFAULT_PAGE_NUMBER
        try:
            page = int(value)
        except (TypeError, ValueError):
            return DEFAULT_PAGE_NUMBER
        return page if page >= 1 else DEFAULT_PAGE_NUMBER

    def to_wire(self) -> dict[str, Any]:
        """Serialize with upstream (camelCase) keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    reasoning: int | None = None

    @property
    def total(self) -> int:
        return self.input + self.output

    @classmethod
    def combine(cls, usages: list["TokenUsage | None"]) -> "TokenUsage":
        """Sum token usage, keeping reasoning as None unless some usage reports it."""
        present = [u for u in usages if u is not None]
        reasoning = [u.reasoning for u in present if u.reasoning is not None]
        return cls(
            input=sum(u.input for u in present),
            output=sum(u.output for u in present),
            reasoning=sum(reasoning) if reasoning else None,
        )


class ExtractionResponse(BaseModel):
    """
    What one upstream extraction call returns for a set of page images.

    Page numbers on the fields are local to the images that were sent.
    """

    fields: list[FieldDescriptor] = []
    success: bool = True
    error: str | None = None
    time_ms: int = 0
    tokens: TokenUsage | None = None


class BatchResult(BaseModel):
    batch_index: int
    start_page: int
    end_page: int
    fields: list[FieldDescriptor] = []
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    time_ms: int = 0
    tokens: TokenUsage | None = None


class MergeStats(BaseModel):
    total_before_merge: int = 0
    total_after_merge: int = 0
    duplicates_removed: int = 0
    batch_field_counts: dict[int, int] = {}
    batch_contributions: dict[int, int] = {}
    conflicts_resolved: int = 0


class BatchingInfo(BaseModel):
    enabled: bool
    batch_size: int
    batch_count: int


class RunAnalytics(BaseModel):
    stage_timings: dict[str, float] = {}
    extraction_time_ms: int = 0
    tokens: TokenUsage = TokenUsage()


class MergedExtractionResult(BaseModel):
    """
    Deduplicated field list for one run plus the metadata describing how it
    was produced. `success` is False when any batch failed; the failed batch
    indices are listed so callers can decide whether to keep the run.
    """

    run_id: str | None = None
    document_id: str | None = None
    fields: list[FieldDescriptor] = []
    merge_stats: MergeStats = MergeStats()
    batching: BatchingInfo | None = None
    success: bool = True
    failed_batches: list[int] = []
    batch_errors: dict[int, str] = {}
    analytics: RunAnalytics = RunAnalytics()


class ExtractionOptions(BaseModel):
    """Per-run configuration. `batch_size` is accepted as given and validated by the planner."""

    batching_enabled: bool = False
    batch_size: Any = DEFAULT_BATCH_SIZE
    concurrency: int = Field(default=DEFAULT_EXTRACTION_CONCURRENCY, ge=1)
    run_timeout_seconds: float | None = Field(default=None, gt=0)


class RunResult(BaseModel):
    run_number: int = Field(ge=1)
    result: MergedExtractionResult

    @property
    def field_count(self) -> int:
        return len(self.result.fields)


class RunError(BaseModel):
    run_number: int = Field(ge=1)
    error_code: str
    message: str


class RunSummary(BaseModel):
    min_field_count: int = 0
    max_field_count: int = 0
    avg_field_count: float = 0.0

    @property
    def field_count_range(self) -> int:
        return self.max_field_count - self.min_field_count


class RunCollection(BaseModel):
    """Outputs of repeated runs over one (document, options) pair."""

    document_id: str | None = None
    num_runs: int = Field(ge=1)
    options: ExtractionOptions | None = None
    runs: list[RunResult] = []
    errors: list[RunError] = []

    def summary(self) -> RunSummary:
        counts = [run.field_count for run in self.runs]
        if not counts:
            return RunSummary()
        return RunSummary(
            min_field_count=min(counts),
            max_field_count=max(counts),
            avg_field_count=round(sum(counts) / len(counts), 2),
        )
