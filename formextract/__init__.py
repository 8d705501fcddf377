"""Batched form-field extraction and run-to-run stability analysis.

- Batch planning: split a document's pages into contiguous batches
- Extraction: one upstream call per batch with bounded concurrency
- Merging: deduplicate fields across batches by signature
- Variance: stability of each field across repeated runs
"""

from formextract.models.dto import (
    Document,
    ExtractionOptions,
    FieldDescriptor,
    MergedExtractionResult,
    PageImage,
    RunCollection,
    RunResult,
)
from formextract.models.variance import VarianceReport
from formextract.orchestrator import analyze_variance, run_extraction, run_repeated_extractions
from formextract.processors.batch_planner import plan_batches
from formextract.processors.field_comparison import compare_fields
from formextract.processors.field_merger import merge_batch_results
from formextract.processors.field_signature import field_signature
from formextract.processors.report_renderer import render_markdown
from formextract.utils.io_utils import load_run_collection, save_run_collection

__all__ = [
    "Document",
    "ExtractionOptions",
    "FieldDescriptor",
    "MergedExtractionResult",
    "PageImage",
    "RunCollection",
    "RunResult",
    "VarianceReport",
    "analyze_variance",
    "run_extraction",
    "run_repeated_extractions",
    "plan_batches",
    "compare_fields",
    "merge_batch_results",
    "field_signature",
    "render_markdown",
    "load_run_collection",
    "save_run_collection",
]
