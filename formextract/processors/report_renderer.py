"""
Render a VarianceReport as a Markdown consistency report.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from formextract.models.variance import (
    RecommendationKind,
    SubgroupAnalysis,
    VarianceReport,
)


def _subgroup_lines(title: str, group: SubgroupAnalysis) -> list[str]:
    lines = [f"## {title} Analysis", "", f"- **Total {title.lower()}**: {group.total}"]
    if group.total:
        lines.append(f"- **100% Stable**: {group.stable} ({group.stable_percentage:.1f}%)")
        lines.append(f"- **Average stability**: {group.avg_stability:.1f}%")
    lines.append("")
    return lines


def _escape_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def render_markdown(
    report: VarianceReport,
    *,
    title: str = "Field Extraction Consistency Report",
    generated_at: datetime | None = None,
    source: str | None = None,
) -> str:
    """
    Format the report for humans. The report object stays the source of truth.

    Args:
        report: Analysis result to render.
        title: Top-level heading.
        generated_at: Timestamp to print; defaults to now (UTC).
        source: Optional description of the analysed document.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    n = report.num_runs
    lines: list[str] = [f"# {title}", ""]
    lines.append(f"**Generated**: {generated_at.isoformat()}")
    lines.append("**Test Configuration**:")
    lines.append(f"- Number of runs: {n}")
    lines.append(f"- Successful runs: {report.successful_runs}")
    lines.append(f"- Failed runs: {report.failed_runs}")
    if source:
        lines.append(f"- Document: {source}")
    lines.append("")

    s = report.summary
    lines += [
        "## Summary Statistics",
        "",
        f"- **Total unique fields found**: {s.total_unique_fields}",
        f"- **Field count range**: {s.min_field_count} - {s.max_field_count}",
        f"- **Average field count**: {s.avg_field_count}",
        f"- **Field count variance**: {s.field_count_range} fields",
        "",
    ]

    b = report.bucket_counts
    lines += [
        "## Field Stability Breakdown",
        "",
        f"- **100% Stable** (appears in all {n} runs): {b.stable} fields",
        f"- **80%+ Stable** (appears in {math.ceil(n * 0.8)}+ runs): {b.mostly_stable} fields",
        f"- **60%+ Stable** (appears in {math.ceil(n * 0.6)}+ runs): {b.somewhat_stable} fields",
        f"- **40%+ Stable** (appears in {math.ceil(n * 0.4)}+ runs): {b.unstable} fields",
        f"- **<40% Stable** (appears in <{math.ceil(n * 0.4)} runs): {b.very_unstable} fields",
        "",
    ]

    lines += [
        "## Field Type Analysis",
        "",
        "| Type | Total | 100% Stable | 80%+ Stable | 60%+ Stable | <60% Stable | Avg Stability |",
        "|------|-------|------------|-------------|-------------|-------------|---------------|",
    ]
    for item in report.type_breakdown:
        lines.append(
            f"| {_escape_cell(item.type)} | {item.total} | {item.buckets.stable} "
            f"| {item.buckets.mostly_stable} | {item.buckets.somewhat_stable} "
            f"| {item.buckets.below_sixty} | {item.avg_stability:.1f}% |"
        )
    lines.append("")

    lines += [
        "## Page-by-Page Analysis",
        "",
        "| Page | Total Fields | 100% Stable | Avg Stability |",
        "|------|-------------|-------------|---------------|",
    ]
    for page in report.page_breakdown:
        lines.append(
            f"| {page.page_number} | {page.total} | {page.stable} | {page.avg_stability:.1f}% |"
        )
    lines.append("")

    lines += _subgroup_lines("Conditional Fields", report.conditional_fields)
    lines += _subgroup_lines("Label Fields", report.label_fields)

    if report.low_stability_fields:
        lines += [
            "## Inconsistent Fields (<80% stability)",
            "",
            f"**Total**: {report.total_low_stability} fields",
            "",
            "| Stability | Label | Type | Page | Appears in Runs |",
            "|-----------|-------|------|------|-----------------|",
        ]
        for row in report.low_stability_fields:
            runs = ", ".join(str(r) for r in row.run_numbers)
            lines.append(
                f"| {row.stability:.0f}% | {_escape_cell(row.preview)} | {_escape_cell(row.type)} "
                f"| {row.page_number} | {runs} |"
            )
        hidden = report.total_low_stability - len(report.low_stability_fields)
        if hidden > 0:
            lines.append("")
            lines.append(f"*... and {hidden} more inconsistent fields*")
        lines.append("")

    tokens = report.token_usage
    if tokens is not None:
        lines += ["## Token Usage Analysis", ""]
        for name, stats in (
            ("Input tokens", tokens.input),
            ("Output tokens", tokens.output),
            ("Reasoning tokens", tokens.reasoning),
        ):
            if stats is None:
                continue
            lines.append(f"- **{name}**:")
            lines.append(f"  - Average: {stats.avg:,.0f}")
            lines.append(f"  - Range: {stats.min:,} - {stats.max:,}")
            lines.append(f"  - Variance: {stats.spread} tokens")
        if tokens.reasoning_share_of_output is not None:
            lines.append(
                f"- **Reasoning tokens as % of output**: {tokens.reasoning_share_of_output:.1f}%"
            )
        lines.append("")

    lines += ["## Recommendations", ""]
    low_types = [
        r for r in report.recommendations if r.kind is RecommendationKind.LOW_STABILITY_TYPE
    ]
    for rec in report.recommendations:
        if rec.kind is RecommendationKind.LOW_STABILITY_TYPE:
            continue
        heading = {
            RecommendationKind.HIGH_PRIORITY: "High Priority",
            RecommendationKind.CONDITIONAL_FIELDS: "Conditional Questions",
            RecommendationKind.LABEL_FIELDS: "Label Fields",
            RecommendationKind.GENERAL: "General Recommendations",
        }[rec.kind]
        if rec.kind is RecommendationKind.GENERAL and low_types:
            lines += _low_type_lines(low_types)
        lines.append(f"### {heading}")
        if rec.kind is not RecommendationKind.GENERAL:
            lines.append(f"- {rec.message}")
        lines += [f"- {action}" for action in rec.actions]
        lines.append("")

    return "\n".join(lines)


def _low_type_lines(recommendations) -> list[str]:
    lines = [
        "### Field Types with Low Stability",
        "The following field types have average stability <80%:",
    ]
    for rec in recommendations:
        lines.append(f"- **{rec.field_type}**: {rec.avg_stability:.1f}% ({rec.field_count} fields)")
    lines.append("")
    return lines
