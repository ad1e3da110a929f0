import math
from datetime import date

import pandas as pd
import pytest

from bmo import statements
from bmo.exports import rows_to_pdf, rows_to_xlsx
from bmo.statements import (
    FileType,
    StatementParseError,
    detect_file_type,
    frame_to_lines,
    parse_amount,
    parse_statement,
    text_to_lines,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1,234.56", 1234.56),
        ("(1,234.56)", -1234.56),
        ("$10.00", 10.0),
        ("-4.50", -4.5),
        ("45.00 DR", -45.0),
        ("45.00 CR", 45.0),
        (12, 12.0),
        ("", None),
        ("n/a", None),
        (None, None),
        (math.nan, None),
    ],
)
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_detect_file_type():
    assert detect_file_type("march.CSV") == FileType.CSV
    assert detect_file_type("march.xlsx") == FileType.EXCEL
    assert detect_file_type("march.pdf") == FileType.PDF
    assert detect_file_type("upload", b"%PDF-1.7 ...") == FileType.PDF
    assert detect_file_type("upload", b"PK\x03\x04...") == FileType.EXCEL
    assert detect_file_type("notes.docx", b"hello") == FileType.UNKNOWN


def test_csv_with_amount_column():
    content = (
        "Date,Description,Amount\n"
        "2024-03-01,Coffee   shop,-4.50\n"
        '2024-03-02,Payroll,"1,200.00"\n'
        ",Closing balance,1195.50\n"
    ).encode()

    lines = parse_statement(content, "march.csv")

    assert [(line.date, line.amount, line.description) for line in lines] == [
        (date(2024, 3, 1), -4.5, "Coffee shop"),
        (date(2024, 3, 2), 1200.0, "Payroll"),
    ]


def test_csv_with_debit_and_credit_columns():
    content = (
        "Txn Date,Narration,Withdrawals,Deposits,Balance\n"
        "03/01/2024,ATM,100.00,,900.00\n"
        "03/02/2024,Salary,,2000.00,2900.00\n"
    ).encode()

    lines = parse_statement(content, "march.csv")

    assert [(line.date, line.amount) for line in lines] == [(date(2024, 3, 1), -100.0), (date(2024, 3, 2), 2000.0)]
    assert lines[1].description == "Salary"


def test_amount_column_is_not_taken_from_credit_column():
    frame = pd.DataFrame({
        "Date": ["2024-03-01"],
        "Withdrawal Amount": ["25.00"],
        "Deposit Amount": [None],
    })

    lines = frame_to_lines(frame)

    assert lines[0].amount == -25.0


def test_missing_columns():
    with pytest.raises(StatementParseError, match="Could not find date and amount columns"):
        parse_statement(b"Foo,Bar\n1,2\n", "odd.csv")


def test_empty_csv():
    with pytest.raises(StatementParseError, match="CSV file is empty"):
        parse_statement(b"Date,Amount\n", "empty.csv")


def test_unsupported_file():
    with pytest.raises(StatementParseError, match="Unsupported file type: notes.docx"):
        parse_statement(b"hello", "notes.docx")


def test_excel_statement():
    content = rows_to_xlsx([
        ["Date", "Description", "Amount"],
        ["2024-03-01", "Coffee", "-4.50"],
        ["2024-03-03", "Refund", "12.00"],
    ])

    lines = parse_statement(content, "march.xlsx")

    assert [line.amount for line in lines] == [-4.5, 12.0]
    assert lines[1].date == date(2024, 3, 3)


def test_text_lines():
    text = "\n".join([
        "ACME BANK STATEMENT",
        "Opening balance 1,000.00",
        "03/15/2024  Coffee shop  -4.50",
        "2024-03-15 Payroll 1,200.00 CR",
        "03/16/2024 Rent 500.00 DR 700.00",
    ])

    lines = text_to_lines(text)

    assert [(line.description, line.amount) for line in lines] == [
        ("Coffee shop", -4.5),
        ("Payroll", 1200.0),
        ("Rent", -500.0),
    ]
    assert lines[2].date == date(2024, 3, 16)


def test_pdf_statement_from_page_text():
    content = rows_to_pdf("Statement", [
        ["Date", "Description", "Amount"],
        ["03/01/2024", "Coffee shop", "-4.50"],
        ["03/02/2024", "Payroll", "1,200.00"],
    ])

    lines = parse_statement(content, "march.pdf")

    assert [(line.date, line.amount) for line in lines] == [(date(2024, 3, 1), -4.5), (date(2024, 3, 2), 1200.0)]


def test_pdf_without_text_falls_back_to_ocr(monkeypatch):
    monkeypatch.setattr(statements, "_pdf_tables_and_text", lambda content: ([], ""))
    monkeypatch.setattr(statements, "ocr_pdf_text", lambda content: "03/05/2024 Scanned deposit 75.00")

    lines = parse_statement(b"%PDF-1.4 scanned", "scan.pdf")

    assert [(line.description, line.amount) for line in lines] == [("Scanned deposit", 75.0)]


def test_pdf_with_no_lines_anywhere(monkeypatch):
    monkeypatch.setattr(statements, "_pdf_tables_and_text", lambda content: ([], "nothing here"))
    monkeypatch.setattr(statements, "ocr_pdf_text", lambda content: "")

    with pytest.raises(StatementParseError, match="No statement lines found in blank.pdf"):
        parse_statement(b"%PDF-1.4", "blank.pdf")
