from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Sequence

from formextract.core.config import LOW_STABILITY_REPORT_LIMIT
from formextract.core.exceptions import RunTimeoutError, ServerError
from formextract.models.dto import (
    BatchingInfo,
    BatchPlan,
    BatchResult,
    Document,
    ExtractionOptions,
    FieldDescriptor,
    MergedExtractionResult,
    MergeStats,
    RunAnalytics,
    RunCollection,
    RunError,
    RunResult,
    TokenUsage,
)
from formextract.models.variance import VarianceReport
from formextract.ports.extractor_port import FieldExtractorPort
from formextract.processors.batch_extractor import extract_batches
from formextract.processors.batch_planner import plan_document
from formextract.processors.field_merger import merge_batch_results
from formextract.processors.stability_analyzer import analyze_runs
from formextract.utils.timing import StageTimers, elapsed_ms

logger = logging.getLogger(__name__)

PARTIAL_RUN_CODE = "PARTIAL_RUN"


def _generate_run_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RunContext:
    document: Document
    options: ExtractionOptions
    run_id: str
    timers: StageTimers = field(default_factory=StageTimers)
    t0: float = field(default_factory=time.perf_counter)

    # populated during run
    plan: BatchPlan | None = None
    batch_results: list[BatchResult] = field(default_factory=list)
    fields: list[FieldDescriptor] = field(default_factory=list)
    merge_stats: MergeStats | None = None

    @property
    def log_extra(self) -> dict:
        return {"run_id": self.run_id, "document_id": self.document.document_id}


async def _run_stages(ctx: RunContext, extractor: FieldExtractorPort) -> None:
    with ctx.timers.timer("plan"):
        ctx.plan = plan_document(
            ctx.document,
            ctx.options.batching_enabled,
            ctx.options.batch_size,
        )
    logger.info(
        "Planned %d batch(es) of up to %d page(s) for %d page(s)",
        ctx.plan.batch_count,
        ctx.plan.effective_batch_size,
        ctx.plan.total_pages,
        extra=ctx.log_extra,
    )

    with ctx.timers.timer("extract"):
        ctx.batch_results = await extract_batches(
            ctx.plan.batches,
            extractor,
            concurrency=ctx.options.concurrency,
        )

    with ctx.timers.timer("merge"):
        ctx.fields, ctx.merge_stats = merge_batch_results(ctx.batch_results)


def _build_result(ctx: RunContext) -> MergedExtractionResult:
    failed = [r for r in ctx.batch_results if not r.success]
    return MergedExtractionResult(
        run_id=ctx.run_id,
        document_id=ctx.document.document_id,
        fields=ctx.fields,
        merge_stats=ctx.merge_stats or MergeStats(),
        batching=BatchingInfo(
            enabled=ctx.plan.batching_enabled,
            batch_size=ctx.plan.effective_batch_size,
            batch_count=ctx.plan.batch_count,
        ),
        success=not failed,
        failed_batches=[r.batch_index for r in failed],
        batch_errors={r.batch_index: r.error or "" for r in failed},
        analytics=RunAnalytics(
            stage_timings=ctx.timers.rounded(),
            extraction_time_ms=sum(r.time_ms for r in ctx.batch_results),
            tokens=TokenUsage.combine([r.tokens for r in ctx.batch_results]),
        ),
    )


async def run_extraction(
    document: Document,
    options: ExtractionOptions | None = None,
    *,
    extractor: FieldExtractorPort,
    run_id: str | None = None,
) -> MergedExtractionResult:
    """
    Plan, extract and merge one run over a document.

    Batch failures do not abort the run: the result has ``success=False``
    and lists the failed batch indices with their errors.

    Raises:
        InvalidPageCountError: If the document has no pages.
        RunTimeoutError: If `options.run_timeout_seconds` elapses; in-flight
            batch calls are cancelled and no partial result is returned.
    """
    ctx = RunContext(
        document=document,
        options=options or ExtractionOptions(),
        run_id=run_id or _generate_run_id(),
    )
    timeout = ctx.options.run_timeout_seconds

    try:
        if timeout is None:
            await _run_stages(ctx, extractor)
        else:
            await asyncio.wait_for(_run_stages(ctx, extractor), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error(
            "Extraction run timed out after %ss",
            timeout,
            extra={**ctx.log_extra, "error_code": "RUN_TIMEOUT"},
        )
        raise RunTimeoutError(ctx.run_id, timeout) from exc

    result = _build_result(ctx)
    log = logger.info if result.success else logger.warning
    log(
        "Run finished with %d field(s), %d failed batch(es)",
        len(result.fields),
        len(result.failed_batches),
        extra={**ctx.log_extra, "duration_ms": elapsed_ms(ctx.t0)},
    )
    return result


async def run_repeated_extractions(
    document: Document,
    options: ExtractionOptions | None = None,
    *,
    extractor: FieldExtractorPort,
    num_runs: int,
    reject_failed_runs: bool = False,
) -> RunCollection:
    """
    Run the same extraction `num_runs` times, one after another.

    Runs that fail with a server-side error (including timeouts) are
    recorded in `errors` and still count towards `num_runs`. With
    `reject_failed_runs`, runs where any batch failed are recorded as
    errors too instead of being kept.

    Raises:
        ValueError: If num_runs < 1.
        ClientError: If the input itself is invalid; retrying cannot help.
    """
    if num_runs < 1:
        raise ValueError(f"num_runs must be >= 1, got {num_runs}")
    options = options or ExtractionOptions()

    runs: list[RunResult] = []
    errors: list[RunError] = []
    for run_number in range(1, num_runs + 1):
        extra = {"document_id": document.document_id, "run_number": run_number}
        try:
            result = await run_extraction(document, options, extractor=extractor)
        except ServerError as exc:
            logger.error(
                "Run %d/%d failed: %s",
                run_number,
                num_runs,
                exc.message,
                extra={**extra, "error_code": exc.error_code},
            )
            errors.append(RunError(run_number=run_number, error_code=exc.error_code, message=exc.message))
            continue

        if reject_failed_runs and not result.success:
            logger.warning(
                "Rejecting run %d/%d with failed batches %s",
                run_number,
                num_runs,
                result.failed_batches,
                extra={**extra, "error_code": PARTIAL_RUN_CODE},
            )
            errors.append(
                RunError(
                    run_number=run_number,
                    error_code=PARTIAL_RUN_CODE,
                    message=f"Batches {result.failed_batches} failed",
                )
            )
            continue
        runs.append(RunResult(run_number=run_number, result=result))

    return RunCollection(
        document_id=document.document_id,
        num_runs=num_runs,
        options=options,
        runs=runs,
        errors=errors,
    )


def analyze_variance(
    runs: Sequence[RunResult] | RunCollection,
    *,
    num_runs: int | None = None,
    report_limit: int = LOW_STABILITY_REPORT_LIMIT,
) -> VarianceReport:
    """Stability report over repeated runs; see `analyze_runs`."""
    return analyze_runs(runs, num_runs=num_runs, report_limit=report_limit)
