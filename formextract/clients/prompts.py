from __future__ import annotations

from typing import Any

from formextract.core.config import KNOWN_FIELD_TYPES
from formextract.models.dto import PageImage


SYSTEM_PROMPT = (
    "You are a form analysis expert. Extract all form fields from the provided images. "
    "Output ONLY a JSON array of field objects, no commentary. Each object has keys "
    '"label", "type" (one of: ' + ", ".join(KNOWN_FIELD_TYPES) + '), "required", '
    '"placeholder", "options", "allowOther", "otherLabel", "otherPlaceholder", '
    '"confidence" (0..1), "pageNumber", "richTextContent". '
    "Headings, instructions and paragraphs are fields of type \"label\" with their text in "
    '"richTextContent".'
)


def build_user_text(page_count: int) -> str:
    return (
        f"Analyze these {page_count} page image(s) and extract all form fields. "
        "Number pages by their position in this request: the first image is pageNumber 1."
        "\n\nRESPONSE JSON EXAMPLE:\n"
        '[{"label": "Full name", "type": "text", "required": true, "confidence": 0.95, "pageNumber": 1}]'
    )


def build_extract_messages(images: list[PageImage], detail: str = "high") -> list[dict[str, Any]]:
    """Chat messages asking for the fields on `images`, in request order."""
    content: list[dict[str, Any]] = [{"type": "text", "text": build_user_text(len(images))}]
    for image in images:
        content.append(
            {
                "type": "image_url",
                "image_url": {"url": image.as_image_url(), "detail": detail},
            }
        )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]
