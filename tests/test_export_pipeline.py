import asyncio
import base64
import io
from pathlib import Path
import pytest
from PyPDF2 import PdfReader
from conftest import FakeRenderer, make_transactions
from ravkav_bridge.models.transaction import TransactionRecord, parse_transactions
from ravkav_bridge.services import export_pipeline
from ravkav_bridge.services.export_pipeline import (
    NO_TRANSACTIONS, ExportFormat, ExportPipeline,
    document_filename, sanitize_label, working_directory
)


def records(count):
    return parse_transactions({"results": make_transactions(count)})


def page_widths(data: bytes):
    return [float(page.mediabox.width) for page in PdfReader(io.BytesIO(data)).pages]


def storage_is_empty(test_settings) -> bool:
    root = Path(test_settings.pdf_storage_dir)
    return not root.exists() or not any(root.iterdir())


def test_sanitize_label():
    assert sanitize_label("4/8/2025") == "4-8-2025"
    assert sanitize_label("2025\\01") == "2025-01"
    assert sanitize_label('a:b*c?"d<e>f|g') == "a_b_c__d_e_f_g"
    assert sanitize_label("   ") == "transaction"
    assert sanitize_label(None) == "transaction"


def test_document_filename_pads_index_to_sort_in_order():
    names = [document_filename(i, "4/8/2025", 12) for i in range(1, 13)]

    assert names[0] == "01 - 4-8-2025.pdf"
    assert names[11] == "12 - 4-8-2025.pdf"
    assert sorted(names) == names
    assert document_filename(3, "x", 3) == "3 - x.pdf"


def test_transaction_record_reads_portal_fields():
    record = TransactionRecord.model_validate(
        {"purchase_approval_link": "https://x/1", "period_description": "4/8/2025", "amount": 5}
    )
    assert record.approval_document_url == "https://x/1"
    assert record.period_label == "4/8/2025"


def test_parse_transactions_accepts_nested_data():
    nested = {"data": {"results": make_transactions(2)}}
    assert len(parse_transactions(nested)) == 2
    assert parse_transactions({"unexpected": True}) == []


@pytest.mark.asyncio
async def test_working_directory_removed_on_error(tmp_path):
    created = None
    with pytest.raises(RuntimeError):
        async with working_directory(tmp_path) as path:
            created = path
            (path / "partial.pdf").write_bytes(b"%PDF")
            raise RuntimeError("boom")

    assert created is not None
    assert not created.exists()


@pytest.mark.asyncio
async def test_concurrent_jobs_get_distinct_directories(tmp_path):
    async def allocate():
        async with working_directory(tmp_path) as path:
            await asyncio.sleep(0)
            return path

    paths = await asyncio.gather(*(allocate() for _ in range(20)))
    assert len(set(paths)) == 20


@pytest.mark.asyncio
async def test_export_merges_pages_in_transaction_order(test_settings):
    renderer = FakeRenderer()
    pipeline = ExportPipeline(renderer, test_settings)

    result = await pipeline.export(records(12))

    assert result.success is True
    assert result.errors == []
    assert page_widths(result.content) == [100 + i for i in range(1, 13)]
    assert result.page_count == 12
    assert not Path(result.working_directory).exists()
    assert storage_is_empty(test_settings)


@pytest.mark.asyncio
async def test_export_page_count_is_sum_of_documents(test_settings):
    urls = [t["purchase_approval_link"] for t in make_transactions(3)]
    renderer = FakeRenderer(pages_per_url={urls[0]: 2, urls[1]: 1, urls[2]: 3})

    result = await ExportPipeline(renderer, test_settings).export(records(3))

    assert result.page_count == 6
    assert page_widths(result.content) == [101, 101, 102, 103, 103, 103]


@pytest.mark.asyncio
async def test_export_names_intermediate_files_by_index_and_label(test_settings):
    renderer = FakeRenderer()

    await ExportPipeline(renderer, test_settings).export(records(3))

    names = [destination.name for _, destination in renderer.calls]
    assert names == ["1 - 1-8-2025.pdf", "2 - 2-8-2025.pdf", "3 - 3-8-2025.pdf"]


@pytest.mark.asyncio
async def test_renders_one_transaction_at_a_time(test_settings):
    renderer = FakeRenderer()

    await ExportPipeline(renderer, test_settings).export(records(5))

    assert renderer.max_active == 1
    assert [url for url, _ in renderer.calls] == [t["purchase_approval_link"] for t in make_transactions(5)]


@pytest.mark.asyncio
async def test_base64_output(test_settings):
    result = await ExportPipeline(FakeRenderer(), test_settings).export(records(2), ExportFormat.PDF_BASE64)

    assert isinstance(result.content, str)
    assert page_widths(base64.b64decode(result.content)) == [101, 102]


@pytest.mark.asyncio
async def test_render_failure_aborts_and_cleans_up(test_settings):
    failing = make_transactions(3)[1]["purchase_approval_link"]
    renderer = FakeRenderer(fail_urls=[failing])

    result = await ExportPipeline(renderer, test_settings).export(records(3))

    assert result.success is False
    assert result.content is None
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Transaction 2 (2-8-2025)")
    assert len(renderer.calls) == 2
    assert not Path(result.working_directory).exists()
    assert storage_is_empty(test_settings)


@pytest.mark.asyncio
async def test_continue_on_error_collects_every_failure(test_settings):
    urls = [t["purchase_approval_link"] for t in make_transactions(4)]
    renderer = FakeRenderer(fail_urls=[urls[0], urls[2]])

    result = await ExportPipeline(renderer, test_settings, continue_on_error=True).export(records(4))

    assert result.success is False
    assert len(result.errors) == 2
    assert len(renderer.calls) == 4
    assert storage_is_empty(test_settings)


@pytest.mark.asyncio
async def test_continue_on_error_defaults_from_settings(test_settings):
    test_settings.export_continue_on_error = True
    assert ExportPipeline(FakeRenderer(), test_settings).continue_on_error is True


@pytest.mark.asyncio
async def test_renderer_that_writes_nothing_is_a_failure(test_settings):
    class SilentRenderer:
        async def render(self, url, destination):
            return destination

    result = await ExportPipeline(SilentRenderer(), test_settings).export(records(1))

    assert result.success is False
    assert "produced no document" in result.errors[0]


@pytest.mark.asyncio
async def test_merge_failure_is_reported_and_cleaned_up(test_settings, monkeypatch):
    def broken_merge(manifest):
        raise ValueError("corrupt document")

    monkeypatch.setattr(export_pipeline, "merge_documents", broken_merge)

    result = await ExportPipeline(FakeRenderer(), test_settings).export(records(2))

    assert result.success is False
    assert result.errors == ["Export failed: corrupt document"]
    assert storage_is_empty(test_settings)


@pytest.mark.asyncio
async def test_unusable_storage_dir_is_reported(test_settings, tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")
    test_settings.pdf_storage_dir = str(blocker)
    renderer = FakeRenderer()

    result = await ExportPipeline(renderer, test_settings).export(records(2), ExportFormat.PDF_BASE64)

    assert result.success is False
    assert result.content is None
    assert result.errors[0].startswith("Export failed: could not create working directory")
    assert renderer.calls == []


def test_transaction_without_period_label():
    record = TransactionRecord.model_validate(
        {"purchase_approval_link": "https://x/1", "period_description": None}
    )

    assert record.period_label is None
    assert document_filename(1, record.period_label, 1) == "1 - transaction.pdf"


@pytest.mark.asyncio
async def test_export_with_missing_labels(test_settings):
    transactions = make_transactions(2)
    transactions[1]["period_description"] = None
    del transactions[0]["period_description"]
    renderer = FakeRenderer()

    result = await ExportPipeline(renderer, test_settings).export(parse_transactions(transactions))

    assert result.success is True
    assert [destination.name for _, destination in renderer.calls] == ["1 - transaction.pdf", "2 - transaction.pdf"]


@pytest.mark.asyncio
async def test_empty_transaction_list(test_settings):
    renderer = FakeRenderer()

    result = await ExportPipeline(renderer, test_settings).export([])

    assert result.success is False
    assert result.errors == [NO_TRANSACTIONS]
    assert renderer.calls == []
