"""Render each transaction's approval page and merge them into one PDF.

Each export job owns a fresh working directory under ``pdf_storage_dir``.
The directory exists only inside ``working_directory()`` and is removed on
every exit path. Page order in the merged document follows the transaction
order through an in-memory manifest, not a directory listing.
"""
import asyncio
import base64
import io
import re
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Tuple, Union
from pydantic import BaseModel, Field
from PyPDF2 import PdfReader, PdfWriter
from ravkav_bridge.api.exceptions import RenderError
from ravkav_bridge.config.settings import Settings, settings
from ravkav_bridge.config.logging import get_logger
from ravkav_bridge.models.transaction import TransactionRecord
from ravkav_bridge.services.renderer import PageRenderer

logger = get_logger("export")

NO_TRANSACTIONS = "No transactions to export"

_PATH_SEPARATORS = re.compile(r"[/\\]")
_UNSAFE_CHARACTERS = re.compile(r'[:*?"<>|\x00-\x1f]')


class ExportFormat(str, Enum):
    PDF_BINARY = "pdfBinary"
    PDF_BASE64 = "pdfBase64"


class RenderedDocument(BaseModel):
    index: int
    label: str
    path: Path


class ExportResult(BaseModel):
    success: bool
    content: Optional[Union[bytes, str]] = None
    page_count: int = 0
    errors: List[str] = Field(default_factory=list)
    working_directory: Optional[str] = None


def sanitize_label(label: Optional[str]) -> str:
    """Make a billing-period label safe to use inside a file name."""
    cleaned = _PATH_SEPARATORS.sub("-", label or "")
    cleaned = _UNSAFE_CHARACTERS.sub("_", cleaned).strip()
    return cleaned or "transaction"


def document_filename(index: int, label: Optional[str], total: int) -> str:
    width = len(str(max(total, 1)))
    return f"{index:0{width}d} - {sanitize_label(label)}.pdf"


def allocate_working_directory_name() -> str:
    return f"tmp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
        logger.debug("Working directory removed", path=str(path))
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("Failed to remove working directory", path=str(path), error=str(e))


@asynccontextmanager
async def working_directory(root: Union[str, Path]) -> AsyncIterator[Path]:
    """Create an exclusively owned job directory and always remove it."""
    path = Path(root) / allocate_working_directory_name()
    path.mkdir(parents=True, exist_ok=False)
    logger.debug("Working directory created", path=str(path))
    try:
        yield path
    finally:
        await asyncio.to_thread(_remove_tree, path)


def merge_documents(manifest: Sequence[RenderedDocument]) -> Tuple[bytes, int]:
    """Concatenate the pages of every manifest entry, in manifest order."""
    writer = PdfWriter()
    for document in manifest:
        reader = PdfReader(str(document.path))
        for page in reader.pages:
            writer.add_page(page)

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue(), len(writer.pages)


def encode_output(data: bytes, output_format: ExportFormat) -> Union[bytes, str]:
    if ExportFormat(output_format) == ExportFormat.PDF_BASE64:
        return base64.b64encode(data).decode("ascii")
    return data


class ExportPipeline:
    def __init__(self, renderer: PageRenderer, config: Optional[Settings] = None,
                 continue_on_error: Optional[bool] = None):
        self.settings = config or settings
        self.renderer = renderer
        self.storage_root = Path(self.settings.pdf_storage_dir)
        if continue_on_error is None:
            continue_on_error = self.settings.export_continue_on_error
        self.continue_on_error = continue_on_error

    async def export(self, transactions: Sequence[TransactionRecord],
                     output_format: ExportFormat = ExportFormat.PDF_BINARY) -> ExportResult:
        if not transactions:
            return ExportResult(success=False, errors=[NO_TRANSACTIONS])

        # _export_in converts its own failures, so only directory creation reaches here
        try:
            async with working_directory(self.storage_root) as workdir:
                return await self._export_in(workdir, transactions, output_format)
        except OSError as e:
            logger.error("Could not create working directory",
                         storage_root=str(self.storage_root), error=str(e))
            return ExportResult(success=False,
                                errors=[f"Export failed: could not create working directory: {e}"])

    async def _export_in(self, workdir: Path, transactions: Sequence[TransactionRecord],
                         output_format: ExportFormat) -> ExportResult:
        log = logger.bind(working_directory=str(workdir), transactions=len(transactions))
        log.info("Export job started", continue_on_error=self.continue_on_error)
        try:
            manifest, errors = await self._render_all(transactions, workdir)
            if errors:
                log.error("Export job failed during rendering", errors=errors,
                          rendered=len(manifest))
                return ExportResult(success=False, errors=errors, working_directory=str(workdir))

            data, page_count = await asyncio.to_thread(merge_documents, manifest)
            content = encode_output(data, output_format)
        except Exception as e:
            log.error("Export job failed", error=str(e), exc_info=True)
            return ExportResult(success=False, errors=[f"Export failed: {e}"],
                                working_directory=str(workdir))

        log.info("Export job finished", pages=page_count, size_bytes=len(data))
        return ExportResult(
            success=True,
            content=content,
            page_count=page_count,
            working_directory=str(workdir),
        )

    async def _render_all(self, transactions: Sequence[TransactionRecord],
                          workdir: Path) -> Tuple[List[RenderedDocument], List[str]]:
        manifest: List[RenderedDocument] = []
        errors: List[str] = []
        total = len(transactions)

        for index, transaction in enumerate(transactions, start=1):
            try:
                document = await self._render_one(index, transaction, workdir, total)
            except RenderError as e:
                errors.append(e.message)
                if not self.continue_on_error:
                    break
                continue
            manifest.append(document)

        return manifest, errors

    async def _render_one(self, index: int, transaction: TransactionRecord,
                          workdir: Path, total: int) -> RenderedDocument:
        label = sanitize_label(transaction.period_label)
        destination = workdir / document_filename(index, transaction.period_label, total)
        logger.info("Rendering transaction", index=index, label=label)
        try:
            await self.renderer.render(transaction.approval_document_url, destination)
        except Exception as e:
            raise RenderError(f"Transaction {index} ({label}): {e}") from e

        if not destination.exists():
            raise RenderError(f"Transaction {index} ({label}): renderer produced no document")
        return RenderedDocument(index=index, label=label, path=destination)
