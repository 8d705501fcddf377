"""
Compare extracted fields against a reference list of expected fields.

Matching is by normalized label only (case-insensitive, whitespace
collapsed), which is how a human checks an extraction against the form.
"""

from __future__ import annotations

from pydantic import BaseModel

from formextract.core.config import (
    SIGNIFICANT_WORD_MIN_LENGTH,
    SIMILAR_MATCHES_LIMIT,
    SIMILAR_MIN_COMMON_RATIO,
    SIMILAR_MIN_COMMON_WORDS,
)
from formextract.models.dto import FieldDescriptor
from formextract.processors.field_signature import normalize_text


class FieldMatch(BaseModel):
    expected: FieldDescriptor
    extracted: list[FieldDescriptor]


class SimilarLabel(BaseModel):
    expected: str
    extracted: str
    common_words: list[str]


class FieldComparison(BaseModel):
    matched: list[FieldMatch] = []
    missing: list[FieldDescriptor] = []
    extra: list[FieldDescriptor] = []
    similar: list[SimilarLabel] = []

    @property
    def recall(self) -> float:
        total = len(self.matched) + len(self.missing)
        return len(self.matched) / total if total else 1.0


def normalize_label(label: str) -> str:
    return normalize_text(label).lower()


def _significant_words(normalized: str) -> list[str]:
    return [w for w in normalized.split(" ") if len(w) >= SIGNIFICANT_WORD_MIN_LENGTH]


def _group_by_label(fields: list[FieldDescriptor]) -> dict[str, list[FieldDescriptor]]:
    grouped: dict[str, list[FieldDescriptor]] = {}
    for field in fields:
        grouped.setdefault(normalize_label(field.label), []).append(field)
    return grouped


def find_similar_labels(
    missing: list[FieldDescriptor],
    extracted: list[FieldDescriptor],
    limit: int = SIMILAR_MATCHES_LIMIT,
) -> list[SimilarLabel]:
    """
    Pair missing expected labels with extracted labels sharing key words.

    A pair qualifies when at least two significant words are shared and they
    cover at least half of the expected label's significant words.
    """
    similar: list[SimilarLabel] = []
    for expected in missing:
        expected_words = _significant_words(normalize_label(expected.label))
        for candidate in extracted:
            candidate_words = set(_significant_words(normalize_label(candidate.label)))
            common = [w for w in expected_words if w in candidate_words]
            if (
                len(common) >= SIMILAR_MIN_COMMON_WORDS
                and len(common) >= len(expected_words) * SIMILAR_MIN_COMMON_RATIO
            ):
                similar.append(
                    SimilarLabel(
                        expected=expected.label,
                        extracted=candidate.label,
                        common_words=common,
                    )
                )
                if len(similar) >= limit:
                    return similar
    return similar


def compare_fields(
    expected: list[FieldDescriptor],
    extracted: list[FieldDescriptor],
) -> FieldComparison:
    expected_by_label = _group_by_label(expected)
    extracted_by_label = _group_by_label(extracted)

    matched: list[FieldMatch] = []
    missing: list[FieldDescriptor] = []
    for field in expected:
        hits = extracted_by_label.get(normalize_label(field.label))
        if hits:
            matched.append(FieldMatch(expected=field, extracted=hits))
        else:
            missing.append(field)

    extra = [f for f in extracted if normalize_label(f.label) not in expected_by_label]

    return FieldComparison(
        matched=matched,
        missing=missing,
        extra=extra,
        similar=find_similar_labels(missing, extracted),
    )
