from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import (
    ImportPipelineError,
    NumberConflictError,
    PersistenceFailureError,
    StorageFailureError,
    StoryNotFoundError,
)
from app.models import Chapter, ChapterMedia, MediaFile, Story
from app.models.chapter import CHAPTER_STATUS_DRAFT, CHAPTER_STATUS_FREE, CHAPTER_STATUS_PREMIUM
from app.services.conflicts import find_conflicts, normalize_number, resolve_single_number
from app.services.import_core.candidate import ChapterCandidate
from app.services.import_core.images import ExtractedImage, StoredImage, relocate_images
from app.services.storage import LocalObjectStorage
from app.services.text_stats import count_words, generate_slug, reading_time_minutes
from app.utils.file_store import chapter_media_folder, new_chapter_id, new_media_id
from app.utils.locks import story_lock

logger = logging.getLogger(__name__)


@dataclass
class BatchImportResult:
    created_count: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: List[Decimal] = field(default_factory=list)
    chapter_ids: List[str] = field(default_factory=list)


# 未发布章节一律为草稿，已发布的为付费或免费
def chapter_status(is_published: bool, is_premium: bool) -> str:
    if not is_published:
        return CHAPTER_STATUS_DRAFT
    return CHAPTER_STATUS_PREMIUM if is_premium else CHAPTER_STATUS_FREE


def get_story(db: Session, story_id: str) -> Story:
    story = db.get(Story, story_id)
    if not story or story.is_deleted:
        raise StoryNotFoundError(f"Story {story_id} not found.")
    return story


# 故事的下一个显示顺序位置
def next_display_order(db: Session, story_id: str) -> Decimal:
    current = (
        db.query(func.max(Chapter.display_order))
        .filter(Chapter.story_id == story_id, Chapter.is_deleted.is_(False))
        .scalar()
    )
    if current is None:
        return Decimal(1)
    return Decimal(str(current)) + 1


# 重新统计故事总字数与章节数，并更新修改时间
def refresh_story_stats(db: Session, story_id: str) -> None:
    story = db.get(Story, story_id)
    if not story:
        return
    total_words, total_chapters = (
        db.query(func.coalesce(func.sum(Chapter.word_count), 0), func.count(Chapter.id))
        .filter(Chapter.story_id == story_id, Chapter.is_deleted.is_(False))
        .one()
    )
    story.word_count = int(total_words or 0)
    story.total_chapters = int(total_chapters or 0)
    story.updated_at = datetime.utcnow()


def _create_chapter_row(
    db: Session,
    story_id: str,
    *,
    chapter_number: Decimal,
    title: str,
    content: str,
    display_order: Decimal,
    is_published: bool,
    is_premium: bool,
    imported_from: str | None,
) -> Chapter:
    now = datetime.utcnow()
    word_count = count_words(content)
    chapter = Chapter(
        id=new_chapter_id(),
        story_id=story_id,
        chapter_number=normalize_number(chapter_number),
        title=title,
        slug=generate_slug(title),
        content=content,
        word_count=word_count,
        estimated_read_time=reading_time_minutes(word_count),
        display_order=normalize_number(display_order),
        status=chapter_status(is_published, is_premium),
        is_published=is_published,
        is_premium=is_premium,
        has_images=False,
        image_count=0,
        imported_from=imported_from,
        imported_at=now if imported_from else None,
        is_deleted=False,
        published_at=now if is_published else None,
        created_at=now,
        updated_at=now,
    )
    db.add(chapter)
    db.flush()
    return chapter


def _image_store(storage: LocalObjectStorage, story_id: str) -> Callable[[ExtractedImage], StoredImage]:
    folder = chapter_media_folder(story_id)

    def _store(image: ExtractedImage) -> StoredImage:
        stored = storage.store(image.data, image.content_type, folder=folder, name=image.name)
        return StoredImage(key=stored.key, url=stored.url, thumbnail_url=stored.thumbnail_url, image=image)

    return _store


def _link_media(db: Session, chapter: Chapter, stored: List[StoredImage | None], uploaded_by: str | None) -> int:
    position = 0
    for item in stored:
        if item is None:
            continue
        media = MediaFile(
            id=new_media_id(),
            filename=item.key,
            original_name=item.image.name,
            mime_type=item.image.content_type,
            file_size=len(item.image.data),
            url=item.url,
            thumbnail_url=item.thumbnail_url,
            uploaded_by=uploaded_by,
            created_at=datetime.utcnow(),
        )
        db.add(media)
        db.add(ChapterMedia(id=new_media_id(), chapter_id=chapter.id, media_id=media.id, position=position))
        position += 1
    return position


def _discard_stored(storage: LocalObjectStorage, stored: List[StoredImage | None]) -> None:
    for item in stored:
        if item is None:
            continue
        try:
            storage.delete(item.key)
        except StorageFailureError as exc:
            logger.warning(f"Could not remove orphaned image {item.key}: {exc}")


def write_single_chapter(
    db: Session,
    storage: LocalObjectStorage,
    candidate: ChapterCandidate,
    story_id: str,
    *,
    uploaded_by: str | None = None,
    imported_from: str | None = None,
    renumber_on_conflict: bool = True,
) -> Chapter:
    """
    Persist one confirmed candidate in a single transaction.

    A missing or conflicting number is moved past the story's highest number;
    with ``renumber_on_conflict=False`` a conflict raises ``NumberConflictError``.
    Images are relocated into storage; a failed upload only blanks its
    placeholder. Any other failure rolls the chapter back, removes images
    stored during the attempt and raises ``PersistenceFailureError``.
    """
    stored: List[StoredImage | None] = []
    with story_lock(story_id):
        try:
            get_story(db, story_id)
            number, renumbered = resolve_single_number(db, story_id, candidate.chapter_number)
            if renumbered and not renumber_on_conflict:
                taken = normalize_number(candidate.chapter_number)
                raise NumberConflictError(
                    f"Chapter {_display_number(taken)} already exists in story {story_id}.", conflicts=[taken]
                )
            if renumbered:
                logger.info(
                    f"Chapter number {candidate.chapter_number} already used in story {story_id}; "
                    f"importing as {number}"
                )
            chapter = _create_chapter_row(
                db,
                story_id,
                chapter_number=number,
                title=candidate.title,
                content=candidate.body,
                display_order=next_display_order(db, story_id),
                is_published=candidate.is_published,
                is_premium=candidate.is_premium,
                imported_from=imported_from,
            )
            content, stored = relocate_images(candidate.body, candidate.images, _image_store(storage, story_id))
            image_count = _link_media(db, chapter, stored, uploaded_by)
            chapter.content = content
            chapter.has_images = image_count > 0
            chapter.image_count = image_count
            db.flush()
            refresh_story_stats(db, story_id)
            db.commit()
        except ImportPipelineError:
            db.rollback()
            _discard_stored(storage, stored)
            raise
        except Exception as exc:
            db.rollback()
            _discard_stored(storage, stored)
            logger.error(f"Chapter write failed for story {story_id}: {exc}", exc_info=True)
            raise PersistenceFailureError(f"Failed to create chapter '{candidate.title}': {exc}") from exc
    db.refresh(chapter)
    return chapter


def write_batch(
    db: Session,
    rows: List[ChapterCandidate],
    story_id: str,
    *,
    imported_from: str | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> BatchImportResult:
    """
    Persist batch rows independently.

    Rows whose number already exists are skipped, not renumbered. A failing
    row is rolled back and reported as ``Chapter <n> (<title>): <error>``
    while the remaining rows continue. ``on_progress(done, total)`` runs
    after every attempted row.
    """
    get_story(db, story_id)
    result = BatchImportResult()
    total = len(rows)
    for index, row in enumerate(rows, start=1):
        number = row.chapter_number
        try:
            number = normalize_number(row.chapter_number)
            with story_lock(story_id):
                if find_conflicts(db, story_id, [number]):
                    logger.info(f"Skipping chapter {number} for story {story_id}: number already exists")
                    result.skipped.append(number)
                else:
                    chapter = _create_chapter_row(
                        db,
                        story_id,
                        chapter_number=number,
                        title=row.title,
                        content=row.body,
                        display_order=number,
                        is_published=row.is_published,
                        is_premium=row.is_premium,
                        imported_from=imported_from,
                    )
                    db.commit()
                    result.created_count += 1
                    result.chapter_ids.append(chapter.id)
        except Exception as exc:  # noqa: BLE001 单行失败不影响其余行
            db.rollback()
            logger.warning(f"Batch row for chapter {number} failed: {exc}")
            result.errors.append(f"Chapter {_display_number(number)} ({row.title}): {exc}")
        if on_progress:
            on_progress(index, total)

    if result.created_count:
        refresh_story_stats(db, story_id)
        db.commit()
    return result


def _display_number(number) -> str:
    if not isinstance(number, Decimal):
        return str(number)
    text = format(number, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
