from __future__ import annotations

import pytest

from formextract.core.exceptions import ExtractionFailure, InvalidPageCountError, RunTimeoutError
from formextract.models.dto import ExtractionOptions, ExtractionResponse, TokenUsage
from formextract.orchestrator import analyze_variance, run_extraction, run_repeated_extractions
from formextract.utils.io_utils import load_run_collection, save_run_collection
from tests.conftest import FakeExtractor, make_document, make_field


def _form_responder(pages: list[int]) -> ExtractionResponse:
    """Every batch sees a 'Applicant' heading on its first image plus one input per page."""
    fields = [make_field(label="Applicant", type="label", page_number=1)]
    fields += [make_field(label=f"Question {p}", type="text", page_number=i) for i, p in enumerate(pages, 1)]
    return ExtractionResponse(fields=fields, time_ms=10, tokens=TokenUsage(input=100, output=20))


@pytest.mark.asyncio
async def test_eight_pages_in_batches_of_three(document_8_pages) -> None:
    extractor = FakeExtractor(_form_responder)
    options = ExtractionOptions(batching_enabled=True, batch_size=3)

    result = await run_extraction(document_8_pages, options, extractor=extractor, run_id="run-1")

    assert sorted(extractor.calls) == [[1, 2, 3], [4, 5, 6], [7, 8]]
    assert result.success is True
    assert result.run_id == "run-1"
    assert result.batching.batch_count == 3
    assert result.batching.batch_size == 3

    headings = [f for f in result.fields if f.label == "Applicant"]
    assert [f.page_number for f in headings] == [1, 4, 7]
    questions = [f for f in result.fields if f.type == "text"]
    assert [f.page_number for f in questions] == list(range(1, 9))
    assert [f.label for f in questions] == [f"Question {p}" for p in range(1, 9)]

    assert result.merge_stats.total_before_merge == 11
    assert result.merge_stats.duplicates_removed == 0
    assert result.analytics.tokens.input == 300
    assert result.analytics.extraction_time_ms == 30
    assert set(result.analytics.stage_timings) == {"plan", "extract", "merge"}


@pytest.mark.asyncio
async def test_same_heading_on_page_one_and_four_kept_twice() -> None:
    def responder(pages):
        # Upstream reports the heading on local pages 1 and 4 of a single batch
        return ExtractionResponse(
            fields=[
                make_field(label="Notice", type="label", page_number=1),
                make_field(label="Notice", type="label", page_number=4),
                make_field(label="Notice", type="label", page_number=1),
            ]
        )

    result = await run_extraction(make_document(8), ExtractionOptions(), extractor=FakeExtractor(responder))
    assert [f.page_number for f in result.fields] == [1, 4]
    assert result.merge_stats.duplicates_removed == 1


@pytest.mark.asyncio
async def test_content_label_on_page_one_and_four_kept_across_batches() -> None:
    def responder(pages):
        # Same unlabelled header on the first image of the first two batches
        fields = [make_field(label=f"Question {p}", type="text", page_number=i) for i, p in enumerate(pages, 1)]
        if pages[0] in (1, 4):
            fields.insert(0, make_field(label="", type="label", page_number=1, rich_text_content="Same header"))
        return ExtractionResponse(fields=fields)

    result = await run_extraction(
        make_document(8),
        ExtractionOptions(batching_enabled=True, batch_size=3),
        extractor=FakeExtractor(responder),
    )

    headers = [f for f in result.fields if f.rich_text_content == "Same header"]
    assert [f.page_number for f in headers] == [1, 4]
    assert result.merge_stats.duplicates_removed == 0


@pytest.mark.asyncio
async def test_failed_batch_marks_run_unsuccessful(document_8_pages) -> None:
    def responder(pages):
        if pages[0] == 4:
            raise ExtractionFailure("exhausted", "upstream down")
        return _form_responder(pages)

    result = await run_extraction(
        document_8_pages,
        ExtractionOptions(batching_enabled=True, batch_size=3),
        extractor=FakeExtractor(responder),
    )

    assert result.success is False
    assert result.failed_batches == [1]
    assert result.batch_errors == {1: "upstream down"}
    assert {f.page_number for f in result.fields} == {1, 2, 3, 7, 8}
    assert result.merge_stats.batch_field_counts[1] == 0


@pytest.mark.asyncio
async def test_run_timeout() -> None:
    extractor = FakeExtractor(_form_responder, delay=5)
    options = ExtractionOptions(batching_enabled=True, batch_size=2, run_timeout_seconds=0.05)

    with pytest.raises(RunTimeoutError) as exc_info:
        await run_extraction(make_document(4), options, extractor=extractor, run_id="slow")
    assert exc_info.value.details["run_id"] == "slow"
    assert extractor.in_flight == 0


@pytest.mark.asyncio
async def test_empty_document_rejected() -> None:
    with pytest.raises(InvalidPageCountError):
        await run_extraction(make_document(0), extractor=FakeExtractor(_form_responder))


@pytest.mark.asyncio
async def test_repeated_runs_feed_variance(tmp_path) -> None:
    """Question 3 goes missing in every other run; everything else is stable."""
    state = {"call": 0}

    def responder(pages):
        state["call"] += 1
        response = _form_responder(pages)
        if state["call"] % 2 == 0:
            response.fields = [f for f in response.fields if f.label != "Question 3"]
        return response

    collection = await run_repeated_extractions(
        make_document(3),
        ExtractionOptions(),
        extractor=FakeExtractor(responder),
        num_runs=4,
    )
    assert [run.run_number for run in collection.runs] == [1, 2, 3, 4]
    assert collection.summary().field_count_range == 1

    path = save_run_collection(tmp_path / "runs.json", collection)
    report = analyze_variance(load_run_collection(path))

    assert report.num_runs == 4
    assert report.bucket_counts.stable == 3
    assert report.total_low_stability == 1
    assert report.low_stability_fields[0].preview == "Question 3"
    assert report.low_stability_fields[0].stability == 50
    assert report.low_stability_fields[0].run_numbers == [1, 3]


@pytest.mark.asyncio
async def test_repeated_runs_capture_failures() -> None:
    def responder(pages):
        raise ExtractionFailure("exhausted")

    collection = await run_repeated_extractions(
        make_document(2),
        ExtractionOptions(),
        extractor=FakeExtractor(responder),
        num_runs=2,
        reject_failed_runs=True,
    )
    assert collection.runs == []
    assert [e.error_code for e in collection.errors] == ["PARTIAL_RUN", "PARTIAL_RUN"]


@pytest.mark.asyncio
async def test_repeated_runs_record_timeouts() -> None:
    collection = await run_repeated_extractions(
        make_document(1),
        ExtractionOptions(run_timeout_seconds=0.01),
        extractor=FakeExtractor(_form_responder, delay=1),
        num_runs=2,
    )
    assert collection.runs == []
    assert [e.error_code for e in collection.errors] == ["RUN_TIMEOUT", "RUN_TIMEOUT"]
    assert collection.num_runs == 2
