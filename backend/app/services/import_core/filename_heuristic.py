# Python
# 功能：从上传文件名或标题中解析章节号与标题

import os
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

# 示例："Chapter 3: The Return"、"chapter 1.5 - Interlude"
_PRIMARY_PATTERN = re.compile(
    r"^\s*chapter\s+(\d+(?:\.\d+)?)\s*[:|\-]\s*(.+?)\s*$", re.IGNORECASE
)
# 示例："3 - The Return"、"12_Title"、"4. Title"
_FALLBACK_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[-_.:|\s]\s*(.+?)\s*$")
# 只有 "Chapter 7" 的标题
_BARE_HEADING_PATTERN = re.compile(r"^\s*chapter\s+(\d+(?:\.\d+)?)\s*$", re.IGNORECASE)


@dataclass
class ChapterInfo:
    number: Decimal | None
    title: str


def _to_number(raw: str) -> Decimal | None:
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def _strip_extension(filename: str) -> str:
    base = os.path.basename(filename or "")
    stem, _ext = os.path.splitext(base)
    return stem.strip()


def parse_chapter_filename(filename: str) -> ChapterInfo:
    """Primary ``Chapter <n>[:|-]<title>``, then ``<n><sep><title>``, then the bare stem."""
    stem = _strip_extension(filename)
    for pattern in (_PRIMARY_PATTERN, _FALLBACK_PATTERN):
        match = pattern.match(stem)
        if not match:
            continue
        number = _to_number(match.group(1))
        title = match.group(2).strip()
        if number is not None and title:
            return ChapterInfo(number=number, title=title)
    return ChapterInfo(number=None, title=stem)


# 文档标题中的章节号优先于文件名
def parse_heading_title(heading: str) -> ChapterInfo:
    text = (heading or "").strip()
    match = _PRIMARY_PATTERN.match(text)
    if match:
        number = _to_number(match.group(1))
        if number is not None:
            return ChapterInfo(number=number, title=match.group(2).strip())
    match = _BARE_HEADING_PATTERN.match(text)
    if match:
        return ChapterInfo(number=_to_number(match.group(1)), title=text)
    return ChapterInfo(number=None, title=text)
