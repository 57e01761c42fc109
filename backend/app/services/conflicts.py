from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import Chapter
from app.models.chapter import MAX_CHAPTER_NUMBER

# 章节号保留两位小数
_CENT = Decimal("0.01")


def normalize_number(number) -> Decimal:
    value = Decimal(str(number))
    if not value.is_finite() or abs(value) > MAX_CHAPTER_NUMBER:
        raise ValueError(f"Chapter number {number} is out of range.")
    return value.quantize(_CENT)


# 故事中未删除且与候选章节号相同的已有章节号
def find_conflicts(db: Session, story_id: str, numbers: Iterable) -> list[Decimal]:
    candidates = {normalize_number(n) for n in numbers if n is not None}
    if not candidates:
        return []
    rows = (
        db.query(Chapter.chapter_number)
        .filter(
            Chapter.story_id == story_id,
            Chapter.is_deleted.is_(False),
            Chapter.chapter_number.in_(sorted(candidates)),
        )
        .all()
    )
    found = {normalize_number(row[0]) for row in rows}
    return sorted(found & candidates)


def max_chapter_number(db: Session, story_id: str) -> Decimal | None:
    value = (
        db.query(func.max(Chapter.chapter_number))
        .filter(Chapter.story_id == story_id, Chapter.is_deleted.is_(False))
        .scalar()
    )
    return None if value is None else Decimal(str(value))


# 故事最大章节号之后的下一个整数章节号
def next_chapter_number(db: Session, story_id: str) -> Decimal:
    current = max_chapter_number(db, story_id)
    if current is None:
        return Decimal(1)
    return current.to_integral_value(rounding=ROUND_FLOOR) + 1


def resolve_single_number(db: Session, story_id: str, number) -> tuple[Decimal, bool]:
    """
    Chapter number for a single-document import.

    A missing or conflicting number becomes the next number after the story's
    highest. Returns ``(number, renumbered)``.
    """
    if number is None:
        return next_chapter_number(db, story_id), False
    if find_conflicts(db, story_id, [number]):
        return next_chapter_number(db, story_id), True
    return normalize_number(number), False
