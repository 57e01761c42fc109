"""Tests for reading the batch chapter sheet."""
from decimal import Decimal
import io

import pytest
from openpyxl import load_workbook

from app.core.errors import BatchTooLargeError, EmptyBatchError, UnsupportedFormatError, ValidationFailureError
from app.services.import_core.batch_sheet import (
    CHAPTERS_SHEET,
    COLUMNS,
    INSTRUCTIONS_SHEET,
    generate_batch_template,
    parse_flag,
    read_batch_sheet,
)
from conftest import build_docx, build_sheet


def test_template_has_header_examples_and_instructions():
    workbook = load_workbook(io.BytesIO(generate_batch_template()))

    assert workbook.sheetnames == [CHAPTERS_SHEET, INSTRUCTIONS_SHEET]
    rows = list(workbook[CHAPTERS_SHEET].iter_rows(values_only=True))
    assert list(rows[0]) == COLUMNS
    assert len(rows) == 4


def test_template_reads_back_as_three_rows():
    rows = read_batch_sheet(generate_batch_template())

    assert [row.chapter_number for row in rows] == [Decimal("1"), Decimal("1.5"), Decimal("2")]
    assert rows[1].title == "Interlude"
    assert rows[1].is_published is True
    assert rows[1].is_premium is False
    assert rows[2].is_premium is True
    assert rows[2].is_published is False


def test_flags_accept_booleans_and_text():
    assert parse_flag(True) is True
    assert parse_flag("true") is True
    assert parse_flag(" TRUE ") is True
    assert parse_flag("yes") is False
    assert parse_flag(None) is False
    assert parse_flag(1) is False


def test_blank_rows_are_skipped():
    data = build_sheet([(1, "One", "<p>x</p>", "FALSE", "TRUE"), (None, None, None, None, None), (2, "Two", "y", None, None)])
    rows = read_batch_sheet(data)

    assert [row.row_number for row in rows] == [2, 4]
    assert rows[1].is_published is False


def test_invalid_rows_are_all_reported():
    data = build_sheet([
        ("abc", "Bad number", "text", "FALSE", "FALSE"),
        (2, "", "text", "FALSE", "FALSE"),
        (3, "Fine", "text", "FALSE", "FALSE"),
        (4, "No content", None, "FALSE", "FALSE"),
    ])
    with pytest.raises(ValidationFailureError) as excinfo:
        read_batch_sheet(data)

    errors = excinfo.value.errors
    assert len(errors) == 3
    assert errors[0].startswith("Row 2:")
    assert "chapter number" in errors[0]
    assert errors[1].startswith("Row 3:") and "title" in errors[1]
    assert errors[2].startswith("Row 5:") and "content" in errors[2]


def test_header_only_sheet_is_empty_batch():
    with pytest.raises(EmptyBatchError):
        read_batch_sheet(build_sheet([]))


def test_more_than_max_rows_is_rejected():
    rows = [(n, f"Chapter {n}", "body", "FALSE", "FALSE") for n in range(1, 52)]
    with pytest.raises(BatchTooLargeError):
        read_batch_sheet(build_sheet(rows))


def test_exactly_max_rows_is_accepted():
    rows = [(n, f"Chapter {n}", "body", "FALSE", "FALSE") for n in range(1, 51)]

    assert len(read_batch_sheet(build_sheet(rows))) == 50


def test_first_sheet_used_when_chapters_sheet_missing():
    data = build_sheet([(5, "Five", "body", "TRUE", "TRUE")], sheet_name="Sheet1")
    rows = read_batch_sheet(data)

    assert rows[0].chapter_number == Decimal("5")


def test_non_workbook_is_unsupported():
    with pytest.raises(UnsupportedFormatError):
        read_batch_sheet(b"chapterNumber,title\n1,One\n")


def test_word_document_renamed_to_xlsx_is_unsupported():
    """A zip package without a workbook part is a format error, not a crash."""
    data = build_docx([("h1", "Chapter 1"), ("p", "text")])

    with pytest.raises(UnsupportedFormatError):
        read_batch_sheet(data)


def test_chapter_number_beyond_column_range_is_row_error():
    data = build_sheet([
        (1, "Fine", "text", "FALSE", "TRUE"),
        (1e30, "Big", "<p>x</p>", "FALSE", "TRUE"),
        (0, "Zero", "text", "FALSE", "TRUE"),
    ])
    with pytest.raises(ValidationFailureError) as excinfo:
        read_batch_sheet(data)

    assert excinfo.value.errors == [
        "Row 3: chapter number out of range",
        "Row 4: chapter number out of range",
    ]


def test_largest_storable_chapter_number_is_accepted():
    rows = read_batch_sheet(build_sheet([("99999999.99", "Last", "text", "FALSE", "FALSE")]))

    assert rows[0].chapter_number == Decimal("99999999.99")
