"""
Quantify how consistently fields are extracted across repeated runs.

Every run is one independent extraction of the same document with the same
options. A field's stability is the share of runs whose merged result
contained its signature. The analysis is a pure function of its inputs.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from formextract.core.config import (
    CONDITIONAL_PHRASES,
    LABEL_FIELD_TYPES,
    LABEL_TYPE,
    LOW_STABILITY_REPORT_LIMIT,
    MOSTLY_STABLE_THRESHOLD,
    PREVIEW_MAX_CHARS,
    SOMEWHAT_STABLE_THRESHOLD,
    STABLE_THRESHOLD,
    UNSTABLE_THRESHOLD,
)
from formextract.core.exceptions import InputFormatError
from formextract.models.dto import RunCollection, RunResult
from formextract.models.variance import (
    BucketCounts,
    LowStabilityField,
    PageBreakdown,
    Recommendation,
    RecommendationKind,
    StabilityBucket,
    StabilityRecord,
    SubgroupAnalysis,
    TokenStats,
    TokenUsageSummary,
    TypeBreakdown,
    VarianceReport,
    VarianceSummary,
)
from formextract.processors.field_signature import field_signature

logger = logging.getLogger(__name__)


def classify_stability(stability: float) -> StabilityBucket:
    if stability >= STABLE_THRESHOLD:
        return StabilityBucket.STABLE
    if stability >= MOSTLY_STABLE_THRESHOLD:
        return StabilityBucket.MOSTLY_STABLE
    if stability >= SOMEWHAT_STABLE_THRESHOLD:
        return StabilityBucket.SOMEWHAT_STABLE
    if stability >= UNSTABLE_THRESHOLD:
        return StabilityBucket.UNSTABLE
    return StabilityBucket.VERY_UNSTABLE


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _validate_runs(runs: Sequence[RunResult], num_runs: int | None) -> int:
    if not runs:
        raise InputFormatError("No successful runs to analyze")
    for position, run in enumerate(runs):
        if not isinstance(run, RunResult):
            raise InputFormatError(
                f"Run at position {position} is {type(run).__name__}, expected RunResult"
            )
    numbers = [run.run_number for run in runs]
    if len(set(numbers)) != len(numbers):
        raise InputFormatError("Run numbers must be unique")

    total = len(runs) if num_runs is None else num_runs
    if total < len(runs):
        raise InputFormatError(
            f"num_runs={total} is smaller than the {len(runs)} runs provided"
        )
    return total


def build_stability_records(
    runs: Sequence[RunResult], num_runs: int
) -> dict[str, StabilityRecord]:
    """
    Map every signature seen in any run to its appearance statistics.

    A signature counts once per run. The first occurrence (run order, then
    field order) is kept as the representative snapshot.
    """
    seen_in: dict[str, list[int]] = {}
    snapshots = {}
    for run in runs:
        for field in run.result.fields:
            signature = field_signature(field)
            run_numbers = seen_in.setdefault(signature, [])
            if not run_numbers:
                snapshots[signature] = field
            if run.run_number not in run_numbers:
                run_numbers.append(run.run_number)

    records: dict[str, StabilityRecord] = {}
    for signature, run_numbers in seen_in.items():
        stability = len(run_numbers) * 100 / num_runs
        records[signature] = StabilityRecord(
            signature=signature,
            field=snapshots[signature],
            appearance_count=len(run_numbers),
            stability=stability,
            bucket=classify_stability(stability),
            run_numbers=run_numbers,
        )
    return records


def _type_breakdown(records: list[StabilityRecord]) -> list[TypeBreakdown]:
    grouped: dict[str, list[StabilityRecord]] = {}
    for record in records:
        grouped.setdefault(record.field.type, []).append(record)

    breakdown = []
    for field_type, members in grouped.items():
        buckets = BucketCounts()
        for record in members:
            buckets.add(record.bucket)
        breakdown.append(
            TypeBreakdown(
                type=field_type,
                total=len(members),
                buckets=buckets,
                avg_stability=_average([r.stability for r in members]),
            )
        )
    breakdown.sort(key=lambda item: (-item.total, item.type))
    return breakdown


def _page_breakdown(records: list[StabilityRecord]) -> list[PageBreakdown]:
    grouped: dict[int, list[StabilityRecord]] = {}
    for record in records:
        grouped.setdefault(record.field.page_number, []).append(record)

    return [
        PageBreakdown(
            page_number=page,
            total=len(members),
            stable=sum(1 for r in members if r.bucket is StabilityBucket.STABLE),
            avg_stability=_average([r.stability for r in members]),
        )
        for page, members in sorted(grouped.items())
    ]


def is_conditional(record: StabilityRecord) -> bool:
    label = record.field.label.lower()
    return any(phrase in label for phrase in CONDITIONAL_PHRASES)


def is_label_field(record: StabilityRecord) -> bool:
    return record.field.type in LABEL_FIELD_TYPES


def _subgroup(members: list[StabilityRecord]) -> SubgroupAnalysis:
    if not members:
        return SubgroupAnalysis()
    stable = sum(1 for r in members if r.bucket is StabilityBucket.STABLE)
    return SubgroupAnalysis(
        total=len(members),
        stable=stable,
        stable_percentage=stable * 100 / len(members),
        avg_stability=_average([r.stability for r in members]),
        below_threshold=sum(1 for r in members if r.stability < MOSTLY_STABLE_THRESHOLD),
        signatures=[r.signature for r in members],
    )


def preview_label(record: StabilityRecord, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    field = record.field
    if field.label:
        text = field.label
    elif field.type == LABEL_TYPE:
        text = f"[Label: {(field.rich_text_content or '')[:max_chars]}...]"
    else:
        text = "[No label]"
    return text[:max_chars]


def _low_stability(records: list[StabilityRecord]) -> list[StabilityRecord]:
    low = [r for r in records if r.stability < MOSTLY_STABLE_THRESHOLD]
    # sort() is stable, so equal stabilities keep first-seen order
    low.sort(key=lambda r: r.stability)
    return low


def _token_stats(values: list[int]) -> TokenStats | None:
    if not values:
        return None
    return TokenStats(avg=round(_average(values), 1), min=min(values), max=max(values))


def summarize_token_usage(runs: Sequence[RunResult]) -> TokenUsageSummary | None:
    """Token usage spread across runs, or None when no run reported tokens."""
    usages = [run.result.analytics.tokens for run in runs]
    inputs = [u.input for u in usages if u.input]
    outputs = [u.output for u in usages if u.output]
    reasoning = [u.reasoning for u in usages if u.reasoning is not None]
    if not (inputs or outputs or reasoning):
        return None

    summary = TokenUsageSummary(
        input=_token_stats(inputs),
        output=_token_stats(outputs),
        reasoning=_token_stats(reasoning),
    )
    if summary.reasoning and summary.output and summary.output.avg:
        summary.reasoning_share_of_output = round(
            summary.reasoning.avg * 100 / summary.output.avg, 1
        )
    return summary


def build_recommendations(
    bucket_counts: BucketCounts,
    type_breakdown: list[TypeBreakdown],
    conditional: SubgroupAnalysis,
    labels: SubgroupAnalysis,
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []

    if bucket_counts.below_sixty:
        recommendations.append(
            Recommendation(
                kind=RecommendationKind.HIGH_PRIORITY,
                message=f"{bucket_counts.below_sixty} fields have <60% stability",
                actions=["Consider reviewing prompt to emphasize extraction of these field types"],
                field_count=bucket_counts.below_sixty,
            )
        )

    if conditional.below_threshold:
        recommendations.append(
            Recommendation(
                kind=RecommendationKind.CONDITIONAL_FIELDS,
                message="Some conditional questions are inconsistently extracted",
                actions=["Review prompt instructions for conditional question handling"],
                avg_stability=conditional.avg_stability,
                field_count=conditional.below_threshold,
            )
        )

    if labels.below_threshold:
        recommendations.append(
            Recommendation(
                kind=RecommendationKind.LABEL_FIELDS,
                message="Some label fields (titles, headers, instructions) are inconsistently extracted",
                actions=["Review prompt instructions for label field extraction"],
                avg_stability=labels.avg_stability,
                field_count=labels.below_threshold,
            )
        )

    low_types = [t for t in type_breakdown if t.avg_stability < MOSTLY_STABLE_THRESHOLD]
    for item in sorted(low_types, key=lambda t: t.avg_stability):
        recommendations.append(
            Recommendation(
                kind=RecommendationKind.LOW_STABILITY_TYPE,
                message=f"Field type '{item.type}' has average stability {item.avg_stability:.1f}%",
                field_type=item.type,
                avg_stability=item.avg_stability,
                field_count=item.total,
            )
        )

    recommendations.append(
        Recommendation(
            kind=RecommendationKind.GENERAL,
            message="General recommendations",
            actions=[
                "Monitor field extraction consistency in production",
                "Consider implementing field validation/verification step",
                "Review if variance is acceptable for your use case",
            ],
        )
    )
    return recommendations


def analyze_runs(
    runs: Sequence[RunResult] | RunCollection,
    num_runs: int | None = None,
    report_limit: int = LOW_STABILITY_REPORT_LIMIT,
) -> VarianceReport:
    """
    Build a VarianceReport from the merged results of repeated runs.

    Args:
        runs: Successful runs, or a RunCollection (whose num_runs is used
            unless overridden).
        num_runs: Total runs attempted, failed ones included. Defaults to
            the number of runs given.
        report_limit: Maximum rows in the low-stability list.

    Raises:
        InputFormatError: If there are no runs or the run set is inconsistent.
    """
    failed_runs = 0
    if isinstance(runs, RunCollection):
        if num_runs is None:
            num_runs = runs.num_runs
        failed_runs = len(runs.errors)
        runs = runs.runs
    if num_runs is not None and num_runs < 1:
        raise InputFormatError(f"num_runs must be >= 1, got {num_runs}")

    total_runs = _validate_runs(runs, num_runs)
    failed_runs = max(failed_runs, total_runs - len(runs))

    records = build_stability_records(runs, total_runs)
    ordered = list(records.values())

    bucket_counts = BucketCounts()
    for record in ordered:
        bucket_counts.add(record.bucket)

    type_breakdown = _type_breakdown(ordered)
    conditional = _subgroup([r for r in ordered if is_conditional(r)])
    labels = _subgroup([r for r in ordered if is_label_field(r)])
    low = _low_stability(ordered)

    counts = [len(run.result.fields) for run in runs]
    summary = VarianceSummary(
        total_unique_fields=len(records),
        min_field_count=min(counts),
        max_field_count=max(counts),
        avg_field_count=round(_average(counts), 2),
        field_count_range=max(counts) - min(counts),
    )

    logger.info(
        "Analyzed %d run(s) of %d: %d unique field(s), %d below %.0f%% stability",
        len(runs),
        total_runs,
        len(records),
        len(low),
        MOSTLY_STABLE_THRESHOLD,
    )

    return VarianceReport(
        num_runs=total_runs,
        successful_runs=len(runs),
        failed_runs=failed_runs,
        summary=summary,
        bucket_counts=bucket_counts,
        type_breakdown=type_breakdown,
        page_breakdown=_page_breakdown(ordered),
        conditional_fields=conditional,
        label_fields=labels,
        low_stability_fields=[
            LowStabilityField(
                stability=r.stability,
                preview=preview_label(r),
                type=r.field.type,
                page_number=r.field.page_number,
                run_numbers=r.run_numbers,
                signature=r.signature,
            )
            for r in low[:report_limit]
        ],
        total_low_stability=len(low),
        token_usage=summarize_token_usage(runs),
        recommendations=build_recommendations(bucket_counts, type_breakdown, conditional, labels),
        records=records,
    )
