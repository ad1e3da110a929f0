import io
from datetime import date
from types import SimpleNamespace

import pandas as pd
import pytest

from bmo.errors import ValidationError
from bmo.exports import (
    PDF_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    format_currency,
    format_us_date,
    render_rows,
    rows_to_csv,
    transaction_rows,
    transactions_to_csv,
)


def test_format_currency():
    assert format_currency(1234.5) == "$1,234.50"
    assert format_currency(-1234.5, "USD") == "-$1,234.50"
    assert format_currency(10, "EUR") == "€10.00"
    assert format_currency(1500, "JPY") == "¥1,500"
    assert format_currency(7, "CHF") == "CHF 7.00"
    assert format_currency(None) == "$0.00"


def test_format_us_date():
    assert format_us_date(date(2024, 3, 5)) == "3/5/2024"


def test_csv_quotes_cells_with_separators():
    csv = rows_to_csv([["a", "b,c", 'say "hi"'], [1, None]])
    assert csv == 'a,"b,c","say ""hi"""\n1,'


def test_transactions_to_csv():
    txn = SimpleNamespace(
        transaction_date=date(2024, 1, 31),
        transaction_number="JE-1",
        description="Office rent, January",
        transaction_type="expense",
        amount=1500,
        currency_code="USD",
        status="posted",
    )

    lines = transactions_to_csv([txn]).split("\n")

    assert lines[0] == "Date,Number,Description,Type,Amount,Currency,Status"
    assert lines[1] == '2024-01-31,JE-1,"Office rent, January",expense,1500.00,USD,posted'


def test_empty_export_is_rejected():
    with pytest.raises(ValidationError, match="No transactions to export"):
        transaction_rows([])


def test_render_xlsx_round_trips_cells():
    content, media_type, extension = render_rows([["Code", "Name"], ["1000", "Cash"]], "xlsx", "Balance Sheet")

    assert (media_type, extension) == (XLSX_MEDIA_TYPE, "xlsx")
    frame = pd.read_excel(io.BytesIO(content), header=None, engine="openpyxl", dtype=str)
    assert frame.iloc[1].tolist() == ["1000", "Cash"]


def test_render_pdf():
    content, media_type, extension = render_rows([["ASSETS"], ["1000", "Cash", "$10.00"], []], "pdf", "Report")

    assert (media_type, extension) == (PDF_MEDIA_TYPE, "pdf")
    assert content.startswith(b"%PDF")


def test_render_unknown_format():
    with pytest.raises(ValidationError, match="Unsupported export format"):
        render_rows([["a"]], "docx", "Report")
