"""
Partition a document's pages into contiguous extraction batches.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from formextract.core.config import DEFAULT_BATCH_SIZE
from formextract.core.exceptions import InvalidPageCountError
from formextract.models.dto import Batch, BatchPlan, Document, PageImage

logger = logging.getLogger(__name__)


def parse_batch_size(requested: Any) -> int | None:
    """
    Interpret a caller-supplied batch size.

    Accepts ints, integral floats and numeric strings; bools and anything
    that is not a positive integer yield None.
    """
    if requested is None or isinstance(requested, bool):
        return None
    if isinstance(requested, int):
        value = requested
    elif isinstance(requested, float):
        if not requested.is_integer():
            return None
        value = int(requested)
    elif isinstance(requested, str):
        try:
            value = int(requested.strip())
        except ValueError:
            return None
    else:
        return None
    return value if value > 0 else None


def resolve_batch_size(total_pages: int, batching_enabled: bool, requested: Any) -> int:
    if not batching_enabled:
        return total_pages
    size = parse_batch_size(requested)
    if size is None:
        logger.warning(
            "Invalid batch size %r, falling back to %d", requested, DEFAULT_BATCH_SIZE
        )
        size = DEFAULT_BATCH_SIZE
    return min(size, total_pages)


def plan_batches(
    total_pages: Any,
    batching_enabled: bool,
    requested_batch_size: Any = DEFAULT_BATCH_SIZE,
    pages: list[PageImage] | None = None,
) -> BatchPlan:
    """
    Split pages 1..total_pages into ceil(total_pages / size) contiguous batches.

    Args:
        total_pages: Number of pages in the document; must be a positive int.
        batching_enabled: When False a single batch spans the whole document.
        requested_batch_size: Desired pages per batch, possibly invalid.
        pages: Ordered page images to distribute over the batches.

    Raises:
        InvalidPageCountError: If total_pages is not a positive integer.
    """
    if isinstance(total_pages, bool) or not isinstance(total_pages, int) or total_pages <= 0:
        raise InvalidPageCountError(total_pages)
    if pages is not None and len(pages) != total_pages:
        raise ValueError(
            f"Expected {total_pages} page images, got {len(pages)}"
        )

    size = resolve_batch_size(total_pages, batching_enabled, requested_batch_size)
    batch_count = math.ceil(total_pages / size)

    batches: list[Batch] = []
    for index in range(batch_count):
        start_page = index * size + 1
        end_page = min(start_page + size - 1, total_pages)
        images = pages[start_page - 1 : end_page] if pages is not None else []
        batches.append(
            Batch(index=index, start_page=start_page, end_page=end_page, images=images)
        )

    logger.debug(
        "Planned %d batch(es) of up to %d page(s) for %d page(s)",
        batch_count,
        size,
        total_pages,
    )
    return BatchPlan(
        total_pages=total_pages,
        batching_enabled=batching_enabled,
        effective_batch_size=size,
        batches=batches,
    )


def plan_document(
    document: Document,
    batching_enabled: bool,
    requested_batch_size: Any = DEFAULT_BATCH_SIZE,
) -> BatchPlan:
    """Plan batches for a document, attaching each range's page images."""
    return plan_batches(
        document.total_pages,
        batching_enabled,
        requested_batch_size,
        pages=list(document.pages),
    )
