# Python
# 功能：读取固定格式的批量章节表格并生成模板

import io
import logging
import math
import zipfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from app.core.errors import (
    BatchTooLargeError,
    EmptyBatchError,
    ParseFailureError,
    UnsupportedFormatError,
    ValidationFailureError,
)
from app.models.chapter import MAX_CHAPTER_NUMBER

logger = logging.getLogger(__name__)

CHAPTERS_SHEET = "Chapters"
INSTRUCTIONS_SHEET = "Instructions"
# 固定列顺序，第 1 行为表头
COLUMNS = ["chapterNumber", "title", "content", "isPremium", "isPublished"]
DEFAULT_MAX_ROWS = 50

EXAMPLE_ROWS = [
    [1, "The Beginning", "<p>It was a quiet morning when the letter arrived.</p>", "FALSE", "TRUE"],
    [1.5, "Interlude", "<p>Meanwhile, far from the village, a door creaked open.</p>", "FALSE", "TRUE"],
    [2, "The Journey", "<p>They left before dawn, carrying only what they could hold.</p>", "TRUE", "FALSE"],
]

INSTRUCTIONS = [
    "Bulk chapter upload template",
    "",
    "Fill one row per chapter on the 'Chapters' sheet. Keep the header row.",
    "chapterNumber: required. A number; decimals such as 1.5 create side chapters.",
    "title: required. Chapter title.",
    "content: required. Chapter body, plain text or HTML such as <p>...</p>.",
    "isPremium: TRUE or FALSE (default FALSE). Published premium chapters are locked.",
    "isPublished: TRUE or FALSE (default FALSE). Unpublished chapters are saved as drafts.",
    f"At most {DEFAULT_MAX_ROWS} chapters per upload.",
    "Rows whose chapter number already exists in the story are skipped on import.",
]


@dataclass
class BatchRow:
    row_number: int
    chapter_number: Decimal
    title: str
    content: str
    is_premium: bool = False
    is_published: bool = False


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_number(value: Any) -> Decimal | None:
    if isinstance(value, bool) or _is_blank(value):
        return None
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


# 布尔单元格直接使用，文本按不区分大小写匹配 "TRUE"
def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().upper() == "TRUE"
    return False


def _select_sheet(workbook) -> Worksheet:
    for name in workbook.sheetnames:
        if name.strip().lower() == CHAPTERS_SHEET.lower():
            return workbook[name]
    return workbook.worksheets[0]


def _open_workbook(data: bytes):
    if not data:
        raise UnsupportedFormatError("Uploaded file is empty.")
    # 非工作簿的 zip（例如改名的 .docx）会抛出 OSError
    try:
        return load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise UnsupportedFormatError("File is not an Excel (.xlsx) workbook.") from exc
    except Exception as exc:
        logger.warning(f"Workbook could not be loaded: {exc}")
        raise ParseFailureError(f"Workbook could not be read: {exc}") from exc


def read_batch_sheet(data: bytes, max_rows: int = DEFAULT_MAX_ROWS) -> List[BatchRow]:
    """
    Parse and validate every data row of the chapter sheet.

    Any invalid row fails the whole read with ``ValidationFailureError``
    listing each problem as ``Row <n>: ...`` (sheet row numbers). The row
    limit is checked after validation.
    """
    workbook = _open_workbook(data)
    try:
        sheet = _select_sheet(workbook)
        rows: List[BatchRow] = []
        errors: List[str] = []
        for row_number, values in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
            cells = list(values[: len(COLUMNS)])
            cells += [None] * (len(COLUMNS) - len(cells))
            if all(_is_blank(cell) for cell in cells):
                continue
            raw_number, raw_title, raw_content, raw_premium, raw_published = cells

            row_errors: List[str] = []
            number = _parse_number(raw_number)
            if number is None:
                row_errors.append("chapter number must be a number")
            elif not 0 < number <= MAX_CHAPTER_NUMBER:
                row_errors.append("chapter number out of range")
            title = "" if raw_title is None else str(raw_title).strip()
            if not title:
                row_errors.append("title is required")
            content = "" if raw_content is None else str(raw_content).strip()
            if not content:
                row_errors.append("content is required")

            if row_errors:
                errors.append(f"Row {row_number}: {', '.join(row_errors)}")
                continue
            rows.append(
                BatchRow(
                    row_number=row_number,
                    chapter_number=number,
                    title=title,
                    content=content,
                    is_premium=parse_flag(raw_premium),
                    is_published=parse_flag(raw_published),
                )
            )
    finally:
        workbook.close()

    if errors:
        logger.info(f"Batch sheet rejected with {len(errors)} invalid row(s)")
        raise ValidationFailureError("Batch sheet contains invalid rows.", errors=errors)
    if not rows:
        raise EmptyBatchError("Batch sheet contains no chapter rows.")
    if len(rows) > max_rows:
        raise BatchTooLargeError(
            f"Batch sheet has {len(rows)} chapters; at most {max_rows} are allowed per upload."
        )
    return rows


def generate_batch_template() -> bytes:
    """Workbook with the chapter sheet (header plus three example rows) and instructions."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = CHAPTERS_SHEET
    sheet.append(COLUMNS)
    for row in EXAMPLE_ROWS:
        sheet.append(row)
    for column, width in zip("ABCDE", (15, 30, 80, 12, 12)):
        sheet.column_dimensions[column].width = width

    notes = workbook.create_sheet(INSTRUCTIONS_SHEET)
    for line in INSTRUCTIONS:
        notes.append([line])
    notes.column_dimensions["A"].width = 100

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
