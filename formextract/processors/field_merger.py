"""
Merge per-batch field lists into one deduplicated, order-preserving list.

Policy:
- The first descriptor seen for a signature is the representative and keeps
  its label, page number and other attributes.
- Confidence becomes the maximum over all duplicates.
- Options become the longest list seen; equal lengths keep the earliest.

Both rules are applied independently, so a duplicate with more options but
lower confidence contributes its options while the higher confidence stays.
Page number is part of the signature, so the same element repeated on
different pages yields separate entries.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from formextract.core.exceptions import MergeAmbiguity
from formextract.models.dto import BatchResult, FieldDescriptor, MergeStats
from formextract.processors.field_signature import field_signature

logger = logging.getLogger(__name__)


def _max_confidence(a: float | None, b: float | None) -> float | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _conflicts(current: FieldDescriptor, duplicate: FieldDescriptor) -> list[str]:
    conflicts = []
    if duplicate.options != current.options:
        conflicts.append("options")
    if (
        duplicate.confidence is not None
        and current.confidence is not None
        and duplicate.confidence != current.confidence
    ):
        conflicts.append("confidence")
    return conflicts


def resolve_duplicate(current: FieldDescriptor, duplicate: FieldDescriptor) -> FieldDescriptor:
    """Fold a later duplicate into the current representative (returns a copy)."""
    update = {}
    confidence = _max_confidence(current.confidence, duplicate.confidence)
    if confidence != current.confidence:
        update["confidence"] = confidence
    if len(duplicate.options) > len(current.options):
        update["options"] = list(duplicate.options)
    if not update:
        return current
    return current.model_copy(update=update)


def merge_fields(
    tagged_fields: Iterable[tuple[int, FieldDescriptor]],
) -> tuple[list[FieldDescriptor], MergeStats]:
    """
    Deduplicate fields given as (batch_index, field) pairs in merge order.

    Returns:
        The merged fields in first-occurrence order and the merge statistics.
    """
    representatives: dict[str, FieldDescriptor] = {}
    batch_field_counts: dict[int, int] = {}
    batch_contributions: dict[int, int] = {}
    total_before = 0
    conflicts_resolved = 0

    for batch_index, field in tagged_fields:
        total_before += 1
        batch_field_counts[batch_index] = batch_field_counts.get(batch_index, 0) + 1
        signature = field_signature(field)

        current = representatives.get(signature)
        if current is None:
            representatives[signature] = field.model_copy(deep=True)
            batch_contributions[batch_index] = batch_contributions.get(batch_index, 0) + 1
            continue

        conflicts = _conflicts(current, field)
        if conflicts:
            conflicts_resolved += 1
            ambiguity = MergeAmbiguity(signature, conflicts, details={"batch_index": batch_index})
            logger.warning(
                ambiguity.message,
                extra={"error_code": ambiguity.error_code, "batch_index": batch_index, "signature": signature},
            )
        representatives[signature] = resolve_duplicate(current, field)

    merged = list(representatives.values())
    stats = MergeStats(
        total_before_merge=total_before,
        total_after_merge=len(merged),
        duplicates_removed=total_before - len(merged),
        batch_field_counts=batch_field_counts,
        batch_contributions=batch_contributions,
        conflicts_resolved=conflicts_resolved,
    )
    return merged, stats


def merge_batch_results(
    batch_results: list[BatchResult],
) -> tuple[list[FieldDescriptor], MergeStats]:
    """
    Merge BatchResults that are already ordered by batch index.

    Failed batches contribute no fields but still appear in the per-batch
    counts with zero, so the statistics account for every batch.
    """
    tagged: list[tuple[int, FieldDescriptor]] = []
    for result in batch_results:
        tagged.extend((result.batch_index, field) for field in result.fields)

    merged, stats = merge_fields(tagged)
    for result in batch_results:
        stats.batch_field_counts.setdefault(result.batch_index, 0)
        stats.batch_contributions.setdefault(result.batch_index, 0)

    logger.info(
        "Merged %d field(s) into %d (%d duplicate(s) removed)",
        stats.total_before_merge,
        stats.total_after_merge,
        stats.duplicates_removed,
    )
    return merged, stats
