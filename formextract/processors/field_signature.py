"""
Canonical identity keys for matching equivalent fields.

A signature is built from the normalized label, type and page number.
Label blocks without a label are identified by the start of their rich-text
content instead. Components are escaped so that a delimiter inside a label
can never make two differently-structured fields look alike.
"""

from __future__ import annotations

import re

from formextract.core.config import (
    LABEL_CONTENT_PREVIEW_CHARS,
    LABEL_TYPE,
    SIGNATURE_DELIMITER,
    SIGNATURE_ESCAPE,
)
from formextract.models.dto import FieldDescriptor

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(value: str | None) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def escape_component(value: str) -> str:
    # Escape the escape character first so the mapping stays injective.
    return value.replace(SIGNATURE_ESCAPE, SIGNATURE_ESCAPE * 2).replace(
        SIGNATURE_DELIMITER, SIGNATURE_ESCAPE + SIGNATURE_DELIMITER
    )


def content_preview(content: str | None, length: int = LABEL_CONTENT_PREVIEW_CHARS) -> str:
    return normalize_text(content)[:length].rstrip()


def is_content_label(field: FieldDescriptor) -> bool:
    """True for label blocks identified by content rather than by label text."""
    return field.type == LABEL_TYPE and not normalize_text(field.label)


def field_signature(field: FieldDescriptor) -> str:
    """
    Derive the signature used to recognize "the same field".

    Examples:
        label "Email", type "email", page 2      -> "Email|email|2"
        empty label, type "label", page 1       -> "|label|1|<first 50 chars of content>"

    Content labels carry an empty leading component, so the two forms never
    share a delimiter count and cannot produce the same key.
    """
    page = str(field.page_number)
    if is_content_label(field):
        parts = ["", LABEL_TYPE, page, escape_component(content_preview(field.rich_text_content))]
    else:
        parts = [
            escape_component(normalize_text(field.label)),
            escape_component(field.type),
            page,
        ]
    return SIGNATURE_DELIMITER.join(parts)
