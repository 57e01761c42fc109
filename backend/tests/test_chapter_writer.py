"""Tests for persisting confirmed chapters (single and batch)."""
import base64
import os
from decimal import Decimal

import pytest
from bs4 import BeautifulSoup

from app.core.errors import NumberConflictError, PersistenceFailureError, StorageFailureError, StoryNotFoundError
from app.models import Chapter, ChapterMedia, MediaFile, Story
from app.services import chapter_writer
from app.services.chapter_writer import write_batch, write_single_chapter
from app.services.import_core.candidate import ChapterCandidate
from app.services.import_core.images import extract_images
from app.services.storage import LocalObjectStorage
from conftest import PNG_1X1, STORY_ID, add_chapter


def _candidate(number=None, title="Dawn", body="<p>The sun rose.</p>", **kwargs):
    return ChapterCandidate(chapter_number=number, title=title, body=body, **kwargs)


def _image_candidate(number=None):
    uri = f"data:image/png;base64,{base64.b64encode(PNG_1X1).decode()}"
    body, images = extract_images(f'<p>Look:</p><p><img src="{uri}"/></p>')
    return _candidate(number, title="Pictures", body=body, images=images)


class BrokenStorage(LocalObjectStorage):
    def store(self, data, content_type, folder="misc", name=None):
        raise StorageFailureError("bucket unavailable")


def _stored_files(root):
    found = []
    for current, _dirs, files in os.walk(root):
        found.extend(os.path.join(current, name) for name in files)
    return found


def test_single_chapter_fields(db, story, media_storage):
    body = "<p>" + "word " * 1001 + "</p>"
    chapter = write_single_chapter(
        db, media_storage, _candidate(Decimal("1"), title="The First Day!", body=body), STORY_ID,
        imported_from="Chapter 1 - The First Day.docx",
    )

    assert chapter.chapter_number == Decimal("1")
    assert chapter.slug == "the-first-day"
    assert chapter.word_count == 1001
    assert chapter.estimated_read_time == 3
    assert chapter.status == "draft"
    assert chapter.is_published is False
    assert chapter.imported_from == "Chapter 1 - The First Day.docx"
    assert chapter.imported_at is not None
    refreshed = db.get(Story, STORY_ID)
    assert refreshed.word_count == 1001
    assert refreshed.total_chapters == 1


def test_display_order_is_next_slot(db, story, media_storage):
    add_chapter(db, 1)
    add_chapter(db, 2)

    chapter = write_single_chapter(db, media_storage, _candidate(Decimal("5")), STORY_ID)

    assert chapter.display_order == Decimal("3")


def test_conflicting_number_is_moved_past_highest(db, story, media_storage):
    add_chapter(db, 1)
    add_chapter(db, 2)

    chapter = write_single_chapter(db, media_storage, _candidate(Decimal("1")), STORY_ID)

    assert chapter.chapter_number == Decimal("3")
    numbers = [row.chapter_number for row in db.query(Chapter).filter(Chapter.story_id == STORY_ID)]
    assert sorted(numbers) == [Decimal("1"), Decimal("2"), Decimal("3")]


def test_missing_number_takes_next(db, story, media_storage):
    add_chapter(db, 4.5)

    chapter = write_single_chapter(db, media_storage, _candidate(None), STORY_ID)

    assert chapter.chapter_number == Decimal("5")


def test_conflict_refused_when_renumbering_disabled(db, story, media_storage):
    add_chapter(db, 1)

    with pytest.raises(NumberConflictError) as excinfo:
        write_single_chapter(db, media_storage, _candidate(Decimal("1")), STORY_ID, renumber_on_conflict=False)

    assert excinfo.value.conflicts == [Decimal("1.00")]
    assert db.query(Chapter).count() == 1


def test_published_premium_status(db, story, media_storage):
    chapter = write_single_chapter(
        db, media_storage, _candidate(Decimal("1"), is_published=True, is_premium=True), STORY_ID
    )

    assert chapter.status == "premium"
    assert chapter.published_at is not None


def test_images_are_relocated_and_linked(db, story, media_storage):
    chapter = write_single_chapter(db, media_storage, _image_candidate(Decimal("1")), STORY_ID, uploaded_by="admin-1")

    img = BeautifulSoup(chapter.content, "html.parser").find("img")
    assert img["src"].startswith(f"/media/chapters/{STORY_ID}/")
    assert img["src"].endswith(".png")
    assert chapter.has_images is True
    assert chapter.image_count == 1
    media = db.query(MediaFile).one()
    assert media.thumbnail_url == f"{media.url}?w=300&h=300&fit=fill"
    assert media.uploaded_by == "admin-1"
    assert db.query(ChapterMedia).filter(ChapterMedia.chapter_id == chapter.id).count() == 1
    assert media_storage.read(media.filename) == PNG_1X1


def test_image_storage_failure_keeps_chapter(db, story, tmp_path):
    storage = BrokenStorage(str(tmp_path / "broken"), "/media")

    chapter = write_single_chapter(db, storage, _image_candidate(Decimal("1")), STORY_ID)

    img = BeautifulSoup(chapter.content, "html.parser").find("img")
    assert img["src"] == ""
    assert chapter.has_images is False
    assert chapter.image_count == 0
    assert db.query(MediaFile).count() == 0


def test_write_failure_rolls_back_everything(db, story, media_storage, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(chapter_writer, "refresh_story_stats", explode)

    with pytest.raises(PersistenceFailureError):
        write_single_chapter(db, media_storage, _image_candidate(Decimal("1")), STORY_ID)

    assert db.query(Chapter).count() == 0
    assert db.query(MediaFile).count() == 0
    assert _stored_files(media_storage.root) == []


def test_unknown_story_is_rejected(db, media_storage):
    with pytest.raises(StoryNotFoundError):
        write_single_chapter(db, media_storage, _candidate(Decimal("1")), "missing-story")


def _rows(*specs):
    return [
        ChapterCandidate(
            chapter_number=Decimal(str(number)),
            title=title,
            body=f"<p>{title} body text.</p>",
            is_published=published,
            is_premium=premium,
        )
        for number, title, published, premium in specs
    ]


def test_batch_statuses_follow_flags(db, story):
    rows = _rows((1, "The Beginning", True, False), (1.5, "Interlude", True, False), (2, "The Journey", False, True))

    result = write_batch(db, rows, STORY_ID, imported_from="chapters.xlsx")

    assert result.created_count == 3
    assert result.errors == []
    by_number = {row.chapter_number: row for row in db.query(Chapter).all()}
    interlude = by_number[Decimal("1.5")]
    assert interlude.status == "free"
    assert interlude.display_order == Decimal("1.5")
    assert by_number[Decimal("2")].status == "draft"
    assert db.get(Story, STORY_ID).total_chapters == 3


def test_batch_skips_numbers_taken_at_confirm_time(db, story):
    add_chapter(db, 2)

    result = write_batch(db, _rows((1, "One", True, False), (2, "Two", True, False)), STORY_ID)

    assert result.created_count == 1
    assert result.skipped == [Decimal("2.00")]
    assert db.query(Chapter).filter(Chapter.title == "Two").count() == 0


def test_batch_partial_failure_continues(db, story, monkeypatch):
    original = chapter_writer._create_chapter_row

    def flaky(db_, story_id, **fields):
        if fields["chapter_number"] == Decimal("3"):
            raise RuntimeError("constraint violated")
        return original(db_, story_id, **fields)

    monkeypatch.setattr(chapter_writer, "_create_chapter_row", flaky)
    rows = _rows(*[(n, f"Title {n}", True, False) for n in range(1, 7)])

    result = write_batch(db, rows, STORY_ID)

    assert result.created_count == 5
    assert result.errors == ["Chapter 3 (Title 3): constraint violated"]
    assert db.query(Chapter).count() == 5


def test_batch_reports_progress_per_row(db, story):
    calls = []

    write_batch(db, _rows((1, "One", False, False), (2, "Two", False, False)), STORY_ID,
                on_progress=lambda done, total: calls.append((done, total)))

    assert calls == [(1, 2), (2, 2)]


def test_batch_row_with_unstorable_number_does_not_stop_batch(db, story):
    rows = _rows((1, "One", True, False), (1e30, "Too Far", True, False), (2, "Two", True, False))

    result = write_batch(db, rows, STORY_ID)

    assert result.created_count == 2
    assert len(result.errors) == 1
    assert "(Too Far)" in result.errors[0] and "out of range" in result.errors[0]
    assert sorted(row.chapter_number for row in db.query(Chapter).all()) == [Decimal("1"), Decimal("2")]
