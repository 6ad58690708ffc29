# =============================================================================
# Document Parser — Format-Specific Text Extraction
# =============================================================================
#
# Turns raw uploaded bytes plus a declared media type into plain text:
#
#   application/pdf                       → Docling (layout-aware, tables → md)
#   …wordprocessingml.document (DOCX)     → python-docx (paragraphs, tables)
#   …spreadsheetml.sheet (XLSX)           → pandas + openpyxl
#   application/vnd.ms-excel (XLS)        → pandas + xlrd
#   text/csv                              → pandas
#   text/plain                            → UTF-8 decode
#
# Spreadsheets are serialised sheet by sheet. Each sheet starts with a
# boundary line produced by sheet_marker(); the chunker recognises these and
# switches to row-level segmentation.
#
# Pipeline position: Step 1 of ingestion (parse → chunk → embed → store).
# =============================================================================

from __future__ import annotations

import io
import logging
import re

import pandas as pd
from docx import Document as DocxDocument

from kbqa.errors import DocumentParseError, EmptyContentError, UnsupportedFormatError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Media types
# ---------------------------------------------------------------------------

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS = "application/vnd.ms-excel"
CSV = "text/csv"
TEXT = "text/plain"

SUPPORTED_MEDIA_TYPES: frozenset[str] = frozenset({PDF, DOCX, XLSX, XLS, CSV, TEXT})

# ---------------------------------------------------------------------------
# Sheet boundary marker
# ---------------------------------------------------------------------------

_SHEET_MARKER_RE = re.compile(r"^=== Sheet: (.*) ===$", re.MULTILINE)


def sheet_marker(name: str) -> str:
    """Boundary line emitted before each spreadsheet sheet."""
    return f"=== Sheet: {name} ==="


def has_sheet_markers(text: str) -> bool:
    return _SHEET_MARKER_RE.search(text) is not None


def is_sheet_marker(line: str) -> bool:
    return _SHEET_MARKER_RE.fullmatch(line.strip()) is not None


def normalise_media_type(media_type: str | None) -> str:
    """Lower-case and drop parameters: 'Text/Plain; charset=utf-8' → 'text/plain'."""
    if not media_type:
        return ""
    return media_type.split(";", 1)[0].strip().lower()


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Initialization loads layout models into memory (a few seconds on first
# use), so one converter is reused for every PDF.
# ---------------------------------------------------------------------------

_converter = None


def _get_converter():
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        from docling.datamodel.base_models import InputFormat
        from docling.datamodel.pipeline_options import PdfPipelineOptions
        from docling.document_converter import DocumentConverter, PdfFormatOption

        logger.info(
            "Initializing Docling DocumentConverter "
            "(first use, may take a few seconds)..."
        )
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        # Image-only scans are reported as EmptyContentError rather than OCR'd.
        pipeline_options.do_ocr = False

        _converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(
                    pipeline_options=pipeline_options,
                ),
            }
        )
        logger.info("Docling DocumentConverter initialized")
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse(data: bytes, media_type: str | None) -> str:
    """
    Extract plain text from a document payload.

    Args:
        data: Raw file bytes.
        media_type: Declared media type (parameters and case are ignored).

    Returns:
        The extracted text; never empty or whitespace-only.

    Raises:
        UnsupportedFormatError: For any media type not listed above.
        DocumentParseError: If the library cannot read the payload.
        EmptyContentError: If nothing but whitespace was extracted.
    """
    kind = normalise_media_type(media_type)

    if kind == PDF:
        text = _parse_pdf(data)
    elif kind == DOCX:
        text = _parse_docx(data)
    elif kind in (XLSX, XLS):
        text = _parse_workbook(data, engine="openpyxl" if kind == XLSX else "xlrd")
    elif kind == CSV:
        text = _parse_csv(data)
    elif kind == TEXT:
        text = data.decode("utf-8", errors="replace")
    else:
        raise UnsupportedFormatError(media_type)

    if not text or not text.strip():
        raise EmptyContentError()

    logger.info("Extracted %d characters (%s)", len(text), kind)
    return text


# ---------------------------------------------------------------------------
# Format handlers
# ---------------------------------------------------------------------------


def _parse_pdf(data: bytes) -> str:
    from docling.datamodel.base_models import DocumentStream
    from docling_core.types.doc.labels import DocItemLabel

    converter = _get_converter()
    try:
        result = converter.convert(
            DocumentStream(name="upload.pdf", stream=io.BytesIO(data))
        )
    except Exception as exc:
        raise DocumentParseError(f"Failed to parse PDF: {exc}") from exc

    text_labels = (
        DocItemLabel.SECTION_HEADER,
        DocItemLabel.TITLE,
        DocItemLabel.TEXT,
        DocItemLabel.LIST_ITEM,
        DocItemLabel.CAPTION,
        DocItemLabel.FOOTNOTE,
    )

    parts: list[str] = []
    for item, _level in result.document.iterate_items():
        label = getattr(item, "label", None)
        if label == DocItemLabel.TABLE:
            table_md = _table_to_markdown(item, result.document)
            if table_md:
                parts.append(table_md)
        elif label in text_labels:
            text = getattr(item, "text", "").strip()
            if text:
                parts.append(text)

    return "\n\n".join(parts)


def _table_to_markdown(table_item: object, document: object) -> str:
    """
    Convert a Docling TableItem to markdown, falling back to its plain text.
    """
    try:
        if hasattr(table_item, "export_to_dataframe"):
            df = table_item.export_to_dataframe(doc=document)
            return df.to_markdown(index=False)
    except Exception as exc:
        logger.warning("Table export to DataFrame failed: %s", exc)

    text = getattr(table_item, "text", "")
    return text.strip() if text else ""


def _parse_docx(data: bytes) -> str:
    try:
        doc = DocxDocument(io.BytesIO(data))
    except Exception as exc:
        raise DocumentParseError(f"Failed to parse DOCX: {exc}") from exc

    lines = [p.text for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                lines.append(" | ".join(cells))
    return "\n".join(lines)


def _parse_workbook(data: bytes, engine: str) -> str:
    try:
        sheets = pd.read_excel(
            io.BytesIO(data), sheet_name=None, header=None, dtype=str, engine=engine,
        )
    except Exception as exc:
        raise DocumentParseError(f"Failed to parse spreadsheet: {exc}") from exc
    return _serialise_sheets(sheets)


def _parse_csv(data: bytes) -> str:
    try:
        frame = pd.read_csv(
            io.BytesIO(data), header=None, dtype=str, skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        return ""
    except Exception as exc:
        raise DocumentParseError(f"Failed to parse CSV: {exc}") from exc
    return _serialise_sheets({"csv": frame})


def _serialise_sheets(sheets: dict[str, pd.DataFrame]) -> str:
    """
    One marker line per sheet, followed by its rows as comma-delimited lines.
    Empty sheets are skipped.
    """
    blocks: list[str] = []
    for name, frame in sheets.items():
        frame = frame.dropna(how="all")
        if frame.empty:
            continue
        rows = frame.fillna("").to_csv(index=False, header=False).strip()
        if rows:
            blocks.append(f"{sheet_marker(str(name))}\n{rows}")
    return "\n".join(blocks)
