from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from formextract.models.dto import (
    Document,
    ExtractionResponse,
    FieldDescriptor,
    MergedExtractionResult,
    PageImage,
    RunResult,
)


def make_field(label: str = "Name", type: str = "text", page_number: int = 1, **kwargs) -> FieldDescriptor:
    return FieldDescriptor(label=label, type=type, page_number=page_number, **kwargs)


def make_document(total_pages: int, document_id: str = "doc-1") -> Document:
    pages = [
        PageImage(page_number=n, url=f"https://example.com/doc/page-{n}.png")
        for n in range(1, total_pages + 1)
    ]
    return Document(document_id=document_id, pages=pages)


def make_run(run_number: int, fields: list[FieldDescriptor], **kwargs) -> RunResult:
    return RunResult(
        run_number=run_number,
        result=MergedExtractionResult(fields=fields, **kwargs),
    )


class FakeExtractor:  # pragma: no cover
    """Port double: `responder` maps the global page numbers of a call to a response."""

    def __init__(
        self,
        responder: Callable[[list[int]], ExtractionResponse],
        delay: float = 0.0,
    ) -> None:
        self._responder = responder
        self._delay = delay
        self.calls: list[list[int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def extract(self, images: list[PageImage]) -> ExtractionResponse:
        pages = [image.page_number for image in images]
        self.calls.append(pages)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            return self._responder(pages)
        finally:
            self.in_flight -= 1


@pytest.fixture
def document_8_pages() -> Document:
    return make_document(8)
