"""Serializers for report rows and transaction lists: CSV, XLSX and PDF."""
from __future__ import annotations

import io
import logging
from datetime import date
from typing import Any, Iterable, Sequence

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .errors import ValidationError

logger = logging.getLogger(__name__)

Row = Sequence[Any]

TRANSACTION_HEADERS = ["Date", "Number", "Description", "Type", "Amount", "Currency", "Status"]

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

_CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "CAD": "CA$",
    "AUD": "A$",
    "NGN": "NGN ",
}
_ZERO_DECIMAL = {"JPY", "KRW", "VND"}


def format_currency(amount: float | None, currency: str | None = "USD") -> str:
    """Format an amount the way en-US locales print currency, e.g. ``-$1,234.50``."""
    currency = (currency or "USD").upper()
    symbol = _CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    decimals = 0 if currency in _ZERO_DECIMAL else 2
    value = float(amount or 0)
    sign = "-" if round(value, decimals) < 0 else ""
    return f"{sign}{symbol}{abs(value):,.{decimals}f}"


def format_us_date(value: date) -> str:
    """``M/D/YYYY``."""
    return f"{value.month}/{value.day}/{value.year}"


def _cell(value: Any) -> str:
    text = "" if value is None else str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def rows_to_csv(rows: Iterable[Row]) -> str:
    """Join rows as CSV, quoting cells that contain a comma, quote or newline."""
    return "\n".join(",".join(_cell(value) for value in row) for row in rows)


def transaction_rows(transactions: Sequence[Any]) -> list[list[Any]]:
    """Header plus one row per transaction.

    Raises:
        ValidationError: If there is nothing to export
    """
    if not transactions:
        raise ValidationError("No transactions to export")

    rows: list[list[Any]] = [list(TRANSACTION_HEADERS)]
    for txn in transactions:
        rows.append([
            txn.transaction_date.isoformat() if txn.transaction_date else "",
            txn.transaction_number or "",
            txn.description or "",
            txn.transaction_type,
            f"{float(txn.amount or 0):.2f}",
            txn.currency_code or "USD",
            txn.status,
        ])
    return rows


def transactions_to_csv(transactions: Sequence[Any]) -> str:
    return rows_to_csv(transaction_rows(transactions))


def rows_to_xlsx(rows: Sequence[Row], sheet_name: str = "Sheet1") -> bytes:
    """Write rows to a single-sheet workbook (no header row or index)."""
    buffer = io.BytesIO()
    frame = pd.DataFrame([list(row) for row in rows])
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=sheet_name[:31], header=False, index=False)
    return buffer.getvalue()


def rows_to_pdf(title: str, rows: Sequence[Row]) -> bytes:
    """Render a title and a table of rows to a letter-size PDF."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter, topMargin=0.5 * inch, bottomMargin=0.5 * inch)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ReportTitle", parent=styles["Heading1"], fontSize=20, textColor=colors.HexColor("#336666")
    )

    elements: list[Any] = [Paragraph(title, title_style), Spacer(1, 12)]

    width = max((len(row) for row in rows), default=0)
    if width:
        data = [[("" if v is None else str(v)) for v in row] + [""] * (width - len(row)) for row in rows]
        table = Table(data, colWidths=[(7.5 * inch) / width] * width, repeatRows=0)
        table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (-1, -1), "Times-Roman"),
            ("FONTSIZE", (0, 0), (-1, -1), 10),
            ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        elements.append(table)

    doc.build(elements)
    logger.debug(f"Rendered PDF '{title}' with {len(rows)} row(s)")
    return buffer.getvalue()


def render_rows(rows: Sequence[Row], export_format: str, title: str) -> tuple[bytes, str, str]:
    """Serialize rows in one of the export formats.

    Returns:
        Tuple of (content, media_type, file_extension)
    """
    if export_format == "csv":
        return rows_to_csv(rows).encode("utf-8"), CSV_MEDIA_TYPE, "csv"
    if export_format == "xlsx":
        return rows_to_xlsx(rows, sheet_name=title), XLSX_MEDIA_TYPE, "xlsx"
    if export_format == "pdf":
        return rows_to_pdf(title, rows), PDF_MEDIA_TYPE, "pdf"
    raise ValidationError(f"Unsupported export format: {export_format}")
