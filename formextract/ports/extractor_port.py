"""FieldExtractorPort protocol for the external OCR+LLM field extractor."""

from __future__ import annotations

from typing import Protocol

from formextract.models.dto import ExtractionResponse, PageImage


class FieldExtractorPort(Protocol):
    """Abstraction over the upstream service that recognizes form fields.

    Implementations receive the page images of one batch and return fields
    numbered relative to those images (first image is page 1). They may
    report failure either with ``success=False`` or by raising, typically
    ``ExtractionFailure`` once their own retries are exhausted.
    """

    async def extract(self, images: list[PageImage]) -> ExtractionResponse: ...
