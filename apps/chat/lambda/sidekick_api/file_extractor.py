"""Download attachments and extract their plain-text content."""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from io import BytesIO
from typing import Any

import httpx
import mammoth
import xlrd
from openpyxl import load_workbook
from pypdf import PdfReader

from .constants import (
    PDF_MIME_TYPE,
    PLAIN_TEXT_MIME_TYPES,
    WORD_MIME_TYPES,
    XLS_MIME_TYPE,
    XLSX_MIME_TYPE,
)
from .schemas import FileAttachment

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised internally when a downloaded file cannot be parsed."""


def extract_pdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(BytesIO(data))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    except Exception as exc:
        raise ExtractionError("Failed to extract PDF content") from exc


def extract_word_text(data: bytes) -> str:
    try:
        result = mammoth.extract_raw_text(BytesIO(data))
    except Exception as exc:
        raise ExtractionError("Failed to extract Word document content") from exc
    return result.value


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    # xlrd reports every number as a float.
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _render_sheets(sheets: Iterable[tuple[str, Iterable[Sequence[Any]]]]) -> str:
    lines: list[str] = []
    for name, rows in sheets:
        lines.append(f"Sheet: {name}")
        for row in rows:
            lines.append("\t".join(_cell_text(cell) for cell in row))
        lines.append("")
    return "\n".join(lines) + "\n"


def extract_spreadsheet_text(data: bytes) -> str:
    """Render an .xlsx workbook, one tab-separated line per row."""
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise ExtractionError("Failed to extract Excel content") from exc

    try:
        return _render_sheets(
            (sheet.title, sheet.iter_rows(values_only=True)) for sheet in workbook.worksheets
        )
    finally:
        workbook.close()


def extract_legacy_spreadsheet_text(data: bytes) -> str:
    """Render a BIFF (.xls) workbook in the same layout as ``extract_spreadsheet_text``."""
    try:
        book = xlrd.open_workbook(file_contents=data)
    except Exception as exc:
        raise ExtractionError("Failed to extract Excel content") from exc

    try:
        return _render_sheets(
            (sheet.name, (sheet.row_values(index) for index in range(sheet.nrows)))
            for sheet in book.sheets()
        )
    finally:
        book.release_resources()


def format_file_block(file: FileAttachment, content: str) -> str:
    return f"=== FILE: {file.file_name} ({file.mime_type}) ===\n{content}\n=== END FILE ==="


class FileContentExtractor:
    """Turns attachment URLs into text, degrading to a bracketed placeholder."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http_client = http_client

    async def extract(self, url: str, file_name: str, mime_type: str) -> str:
        logger.info(
            "Extracting file content",
            extra={"file_name": file_name, "mime_type": mime_type},
        )
        try:
            response = await self._http_client.get(url)
            if response.is_error:
                raise ExtractionError(f"Failed to fetch file: {response.status_code}")
            data = response.content

            if mime_type == PDF_MIME_TYPE:
                return await asyncio.to_thread(extract_pdf_text, data)
            if mime_type in WORD_MIME_TYPES:
                return await asyncio.to_thread(extract_word_text, data)
            if mime_type == XLSX_MIME_TYPE:
                return await asyncio.to_thread(extract_spreadsheet_text, data)
            if mime_type == XLS_MIME_TYPE:
                return await asyncio.to_thread(extract_legacy_spreadsheet_text, data)
            if mime_type in PLAIN_TEXT_MIME_TYPES:
                return data.decode("utf-8", errors="replace")
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "File content extraction failed",
                extra={"file_name": file_name, "mime_type": mime_type, "reason": reason},
            )
            return f"[File: {file_name} - Content extraction failed: {reason}]"

        logger.warning(
            "Unsupported file type for extraction",
            extra={"file_name": file_name, "mime_type": mime_type},
        )
        return f"[File: {file_name} - Content extraction not supported for {mime_type}]"

    async def _content_for(self, file: FileAttachment) -> str:
        if file.extracted_content is not None:
            return file.extracted_content
        return await self.extract(file.url, file.file_name, file.mime_type)

    async def extract_many(self, files: Sequence[FileAttachment]) -> list[str]:
        """Extract every file concurrently, keeping input order.

        Files that already carry ``extracted_content`` are not downloaded again.
        """
        return list(await asyncio.gather(*(self._content_for(file) for file in files)))
