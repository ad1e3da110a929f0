"""Bank statement import.

Reads statement lines (date, amount, description) from CSV, Excel and PDF
files. PDFs are read table-first with pdfplumber, then line by line from the
page text, and scanned PDFs fall back to Tesseract OCR.
"""
from __future__ import annotations

import io
import logging
import re
from enum import Enum
from typing import Any

import pandas as pd
import pdfplumber
import pytesseract
from pdf2image import convert_from_bytes
from pypdf import PdfReader

from bmo.config import settings
from bmo.errors import BmoError
from bmo.pipelines.reconciliation import StatementLine

logger = logging.getLogger(__name__)


class FileType(str, Enum):
    """Statement file types."""
    PDF = "pdf"
    CSV = "csv"
    EXCEL = "excel"
    UNKNOWN = "unknown"


class StatementParseError(BmoError):
    """Raised when a statement cannot be read."""
    pass


DATE_COLUMNS = ("date", "transaction date", "txn date", "value date", "posting date", "posted")
DESCRIPTION_COLUMNS = ("description", "narration", "details", "particulars", "memo", "payee", "reference")
AMOUNT_COLUMNS = ("amount", "transaction amount")
DEBIT_COLUMNS = ("debit", "withdrawal", "withdrawals", "money out", "paid out", "dr")
CREDIT_COLUMNS = ("credit", "deposit", "deposits", "money in", "paid in", "cr")

# "03/15/2024  Coffee shop  -4.50" or "2024-03-15 Payroll 1,200.00 CR"
_TEXT_LINE = re.compile(
    r"^(?P<date>\d{1,4}[/.-]\d{1,2}[/.-]\d{1,4})\s+"
    r"(?P<description>.+?)\s+"
    r"(?P<amount>[-+]?\(?[$€£]?[\d,]+\.\d{2}\)?(?:\s?(?:CR|DR))?)"
    r"(?:\s+[-+]?[$€£]?[\d,]+\.\d{2})?\s*$",
    re.IGNORECASE,
)


def detect_file_type(filename: str, content: bytes | None = None) -> FileType:
    """Detect the file type from the extension, then from magic bytes."""
    name = filename.lower()
    if name.endswith(".pdf"):
        return FileType.PDF
    if name.endswith((".csv", ".txt")):
        return FileType.CSV
    if name.endswith((".xls", ".xlsx", ".xlsm")):
        return FileType.EXCEL

    if content:
        if content.startswith(b"%PDF"):
            return FileType.PDF
        if content.startswith(b"PK\x03\x04"):  # ZIP/Office
            return FileType.EXCEL
    return FileType.UNKNOWN


def parse_amount(value: Any) -> float | None:
    """Parse a statement amount.

    Handles thousands separators, currency symbols, ``(12.00)`` negatives
    and trailing ``DR``/``CR`` markers.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return None if pd.isna(value) else float(value)

    text = str(value).strip().replace(",", "")
    for symbol in ("$", "€", "£"):
        text = text.replace(symbol, "")
    if not text:
        return None

    sign = 1.0
    upper = text.upper()
    if upper.endswith("DR"):
        sign, text = -1.0, text[:-2].strip()
    elif upper.endswith("CR"):
        text = text[:-2].strip()
    if text.startswith("(") and text.endswith(")"):
        sign, text = -sign, text[1:-1]

    try:
        return sign * float(text)
    except ValueError:
        return None


def parse_date(value: Any):
    """Parse a statement date, returning None when it is not a date."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    parsed = pd.to_datetime(str(value).strip(), errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def _find_column(columns: list[str], candidates: tuple[str, ...]) -> str | None:
    normalized = {c: str(c).strip().lower() for c in columns}
    for candidate in candidates:
        for column, name in normalized.items():
            if name == candidate:
                return column
    for candidate in candidates:
        if len(candidate) <= 2:
            continue
        for column, name in normalized.items():
            if candidate in name:
                return column
    return None


def frame_to_lines(df: pd.DataFrame) -> list[StatementLine]:
    """Convert a statement table to lines.

    The table needs a date column and either an amount column or a
    debit/credit pair. Debits become negative amounts. Rows without a
    parseable date or amount (headers, totals, blanks) are skipped.
    """
    columns = list(df.columns)
    date_col = _find_column(columns, DATE_COLUMNS)
    desc_col = _find_column(columns, DESCRIPTION_COLUMNS)
    amount_col = _find_column(columns, AMOUNT_COLUMNS)
    debit_col = _find_column(columns, DEBIT_COLUMNS)
    credit_col = _find_column(columns, CREDIT_COLUMNS)
    if amount_col is not None and amount_col in (debit_col, credit_col):
        amount_col = None

    if date_col is None or (amount_col is None and debit_col is None and credit_col is None):
        raise StatementParseError(f"Could not find date and amount columns in: {[str(c) for c in columns]}")

    lines = []
    for record in df.to_dict("records"):
        txn_date = parse_date(record.get(date_col))
        if txn_date is None:
            continue

        if amount_col is not None:
            amount = parse_amount(record.get(amount_col))
        else:
            debit = parse_amount(record.get(debit_col)) if debit_col else None
            credit = parse_amount(record.get(credit_col)) if credit_col else None
            if debit is None and credit is None:
                amount = None
            else:
                amount = (credit or 0.0) - abs(debit or 0.0)
        if amount is None:
            continue

        description = record.get(desc_col) if desc_col else ""
        if description is None or (isinstance(description, float) and pd.isna(description)):
            description = ""
        lines.append(StatementLine(date=txn_date, amount=round(amount, 2), description=" ".join(str(description).split())))
    return lines


def text_to_lines(text: str) -> list[StatementLine]:
    """Read ``date description amount [balance]`` lines from plain text."""
    lines = []
    for raw in text.splitlines():
        match = _TEXT_LINE.match(raw.strip())
        if not match:
            continue
        txn_date = parse_date(match.group("date"))
        amount = parse_amount(match.group("amount"))
        if txn_date is None or amount is None:
            continue
        lines.append(StatementLine(date=txn_date, amount=round(amount, 2), description=match.group("description").strip()))
    return lines


def parse_csv_statement(content: bytes) -> list[StatementLine]:
    try:
        df = pd.read_csv(io.BytesIO(content), encoding="utf-8")
    except Exception as e:
        logger.error(f"CSV statement parsing failed: {e}")
        raise StatementParseError(f"Failed to parse CSV: {e}") from e
    if df.empty:
        raise StatementParseError("CSV file is empty")
    logger.info(f"Parsed CSV statement with {len(df)} rows and {len(df.columns)} columns")
    return frame_to_lines(df)


def parse_excel_statement(content: bytes, sheet_name: str | int = 0) -> list[StatementLine]:
    try:
        df = pd.read_excel(io.BytesIO(content), sheet_name=sheet_name, engine="openpyxl")
    except Exception as e:
        logger.error(f"Excel statement parsing failed: {e}")
        raise StatementParseError(f"Failed to parse Excel: {e}") from e
    if df.empty:
        raise StatementParseError("Excel sheet is empty")
    logger.info(f"Parsed Excel statement with {len(df)} rows and {len(df.columns)} columns")
    return frame_to_lines(df)


def _pdf_tables_and_text(content: bytes) -> tuple[list[pd.DataFrame], str]:
    frames = []
    text_parts = []
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        for page in pdf.pages:
            for table in page.extract_tables() or []:
                if len(table) > 1 and table[0]:
                    header = [str(c or "").strip() for c in table[0]]
                    frames.append(pd.DataFrame(table[1:], columns=header))
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
    return frames, "\n".join(text_parts)


def _pypdf_text(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def ocr_pdf_text(content: bytes) -> str:
    """OCR every page of a scanned PDF with Tesseract."""
    images = convert_from_bytes(content, dpi=settings.ocr.dpi, fmt="jpeg")
    logger.info(f"Extracted {len(images)} pages as images for OCR")

    text_parts = []
    for idx, image in enumerate(images):
        try:
            page_text = pytesseract.image_to_string(image, lang=settings.ocr.tesseract_lang)
        except Exception as e:
            logger.error(f"OCR failed for page {idx + 1}: {e}")
            continue
        if page_text.strip():
            text_parts.append(page_text)
    return "\n".join(text_parts)


def parse_pdf_statement(content: bytes) -> list[StatementLine]:
    """Tables first, then page text, then OCR."""
    try:
        frames, text = _pdf_tables_and_text(content)
    except Exception as e:
        logger.warning(f"pdfplumber extraction failed: {e}, trying pypdf")
        try:
            frames, text = [], _pypdf_text(content)
        except Exception as e2:
            logger.error(f"pypdf extraction also failed: {e2}")
            raise StatementParseError(f"Failed to parse PDF: {e}") from e2

    lines: list[StatementLine] = []
    for frame in frames:
        try:
            lines.extend(frame_to_lines(frame))
        except StatementParseError:
            logger.debug(f"Skipping PDF table without statement columns: {list(frame.columns)}")
    if lines:
        logger.info(f"Read {len(lines)} statement lines from PDF tables")
        return lines

    lines = text_to_lines(text)
    if lines:
        logger.info(f"Read {len(lines)} statement lines from PDF text")
        return lines

    logger.info("No statement lines in PDF text, trying OCR")
    try:
        text = ocr_pdf_text(content)
    except Exception as e:
        logger.error(f"PDF OCR failed: {e}")
        raise StatementParseError(f"OCR processing failed: {e}") from e
    return text_to_lines(text)


def parse_statement(content: bytes, filename: str) -> list[StatementLine]:
    """Parse an uploaded bank statement.

    Args:
        content: Raw file bytes
        filename: Original filename, used to detect the file type

    Returns:
        Statement lines in file order

    Raises:
        StatementParseError: If the type is unsupported or no lines are found
    """
    file_type = detect_file_type(filename, content)
    if file_type == FileType.CSV:
        lines = parse_csv_statement(content)
    elif file_type == FileType.EXCEL:
        lines = parse_excel_statement(content)
    elif file_type == FileType.PDF:
        lines = parse_pdf_statement(content)
    else:
        raise StatementParseError(f"Unsupported file type: {filename}")

    if not lines:
        raise StatementParseError(f"No statement lines found in {filename}")
    logger.info(f"Imported {len(lines)} statement lines from {filename}")
    return lines
