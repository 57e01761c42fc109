"""Shared fixtures: temporary database, storage directories and fixture files."""
import base64
import io
import os
import tempfile
from datetime import datetime
from decimal import Decimal

import pytest

# Runtime directories must point somewhere disposable before the app is imported
_RUNTIME_DIR = tempfile.mkdtemp(prefix="chapter-import-tests-")
os.environ.setdefault("DATA_DIR", _RUNTIME_DIR)
os.environ.setdefault("UPLOAD_DIR", os.path.join(_RUNTIME_DIR, "uploads"))
os.environ.setdefault("MEDIA_DIR", os.path.join(_RUNTIME_DIR, "media"))
os.environ.setdefault("SQLITE_PATH", os.path.join(_RUNTIME_DIR, "app.db"))
os.environ.setdefault("JWT_SECRET", "chapter-import-test-secret-0123456789abcdef")

from docx import Document  # noqa: E402
from openpyxl import Workbook  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.database import init_db  # noqa: E402
from app.models import Chapter, Story  # noqa: E402
from app.services.import_core.batch_sheet import COLUMNS  # noqa: E402
from app.services.storage import LocalObjectStorage  # noqa: E402

# 1x1 transparent PNG
PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
STORY_ID = "story-1"


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def media_storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "media"), "/media", thumbnail_size=300)


@pytest.fixture
def upload_storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "uploads"), "")


@pytest.fixture
def story(db):
    now = datetime.utcnow()
    item = Story(
        id=STORY_ID,
        user_id="author-1",
        title="The Long Road",
        word_count=0,
        total_chapters=0,
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )
    db.add(item)
    db.commit()
    return item


def add_chapter(db, number, title="Existing chapter", story_id=STORY_ID, is_deleted=False):
    now = datetime.utcnow()
    chapter = Chapter(
        id=f"ch-{story_id}-{number}",
        story_id=story_id,
        chapter_number=Decimal(str(number)),
        title=title,
        slug=title.lower().replace(" ", "-"),
        content="<p>Already here.</p>",
        word_count=2,
        estimated_read_time=1,
        display_order=Decimal(str(number)),
        status="free",
        is_published=True,
        is_premium=False,
        is_deleted=is_deleted,
        deleted_at=now if is_deleted else None,
        created_at=now,
        updated_at=now,
    )
    db.add(chapter)
    db.commit()
    return chapter


def build_docx(blocks):
    """Build a .docx from ("h1" | "p" | "img", text) blocks."""
    document = Document()
    for kind, value in blocks:
        if kind == "h1":
            document.add_heading(value, level=1)
        elif kind == "img":
            document.add_picture(io.BytesIO(PNG_1X1))
        else:
            document.add_paragraph(value)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def build_sheet(rows, header=None, sheet_name="Chapters"):
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    sheet.append(header or COLUMNS)
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
