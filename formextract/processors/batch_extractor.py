"""
Run the external field extractor once per batch with bounded concurrency.

Batches are put on a queue drained by a fixed number of worker tasks. Each
worker calls the extractor with the batch images, converts the batch-local
page numbers of the returned fields to global ones, and records failures on
the BatchResult instead of raising. Results are returned in batch-index
order whatever the completion order was.
"""

from __future__ import annotations

import asyncio
import logging
import time

from formextract.core.config import DEFAULT_EXTRACTION_CONCURRENCY
from formextract.core.exceptions import BaseError
from formextract.models.dto import (
    Batch,
    BatchResult,
    ExtractionResponse,
    FieldDescriptor,
)
from formextract.ports.extractor_port import FieldExtractorPort

logger = logging.getLogger(__name__)

UPSTREAM_FAILURE_CODE = "EXTRACTOR_FAILED"


def to_global_page(field: FieldDescriptor, batch: Batch) -> FieldDescriptor:
    """Re-tag a field's batch-local page number with the batch's global offset."""
    local_page = field.page_number
    global_page = batch.start_page + local_page - 1
    if global_page > batch.end_page:
        logger.warning(
            "Field %r reports page %d outside batch %d (%d pages), clamping",
            field.label,
            local_page,
            batch.index,
            batch.page_count,
            extra={"batch_index": batch.index},
        )
        global_page = batch.end_page
    return field.model_copy(update={"page_number": global_page})


def _failed_result(batch: Batch, message: str, code: str, time_ms: int) -> BatchResult:
    return BatchResult(
        batch_index=batch.index,
        start_page=batch.start_page,
        end_page=batch.end_page,
        fields=[],
        success=False,
        error=message,
        error_code=code,
        time_ms=time_ms,
    )


async def extract_batch(batch: Batch, extractor: FieldExtractorPort) -> BatchResult:
    """
    Extract one batch, never raising for upstream failures.

    Cancellation is not a failure and propagates to the caller.
    """
    t0 = time.perf_counter()
    try:
        response: ExtractionResponse = await extractor.extract(list(batch.images))
    except BaseError as exc:
        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        logger.error(
            "Batch %d (pages %d-%d) failed: %s",
            batch.index,
            batch.start_page,
            batch.end_page,
            exc.message,
            extra={"batch_index": batch.index, "error_code": exc.error_code},
        )
        return _failed_result(batch, exc.message, exc.error_code, elapsed_ms)
    except Exception as exc:
        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        logger.error(
            "Batch %d (pages %d-%d) failed unexpectedly",
            batch.index,
            batch.start_page,
            batch.end_page,
            exc_info=True,
            extra={"batch_index": batch.index, "error_code": UPSTREAM_FAILURE_CODE},
        )
        return _failed_result(batch, f"{type(exc).__name__}: {exc}", UPSTREAM_FAILURE_CODE, elapsed_ms)

    elapsed_ms = int((time.perf_counter() - t0) * 1000)
    time_ms = response.time_ms or elapsed_ms

    if not response.success:
        message = response.error or "Extractor reported failure"
        logger.error(
            "Batch %d (pages %d-%d) failed: %s",
            batch.index,
            batch.start_page,
            batch.end_page,
            message,
            extra={"batch_index": batch.index, "error_code": UPSTREAM_FAILURE_CODE},
        )
        failed = _failed_result(batch, message, UPSTREAM_FAILURE_CODE, time_ms)
        failed.tokens = response.tokens
        return failed

    fields = [to_global_page(field, batch) for field in response.fields]
    logger.info(
        "Batch %d (pages %d-%d) extracted %d field(s) in %d ms",
        batch.index,
        batch.start_page,
        batch.end_page,
        len(fields),
        time_ms,
        extra={"batch_index": batch.index, "duration_ms": time_ms},
    )
    return BatchResult(
        batch_index=batch.index,
        start_page=batch.start_page,
        end_page=batch.end_page,
        fields=fields,
        success=True,
        time_ms=time_ms,
        tokens=response.tokens,
    )


async def extract_batches(
    batches: list[Batch],
    extractor: FieldExtractorPort,
    concurrency: int = DEFAULT_EXTRACTION_CONCURRENCY,
) -> list[BatchResult]:
    """
    Extract all batches with at most `concurrency` upstream calls in flight.

    Args:
        batches: Planned batches; indices must be unique.
        extractor: Upstream field extractor.
        concurrency: Number of worker tasks.

    Returns:
        One BatchResult per batch, ordered by batch index.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    if not batches:
        return []

    queue: asyncio.Queue[Batch] = asyncio.Queue()
    for batch in batches:
        queue.put_nowait(batch)

    results: dict[int, BatchResult] = {}

    async def worker() -> None:
        while True:
            try:
                batch = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[batch.index] = await extract_batch(batch, extractor)

    workers = [
        asyncio.create_task(worker()) for _ in range(min(concurrency, len(batches)))
    ]
    try:
        await asyncio.gather(*workers)
    finally:
        for task in workers:
            if not task.done():
                task.cancel()
        # Let cancelled workers unwind before partial results are dropped.
        await asyncio.gather(*workers, return_exceptions=True)

    return [results[batch.index] for batch in sorted(batches, key=lambda b: b.index)]
