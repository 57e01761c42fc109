from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    ImportPipelineError,
    InvalidJobStateError,
    NumberConflictError,
    ParseFailureError,
    StorageFailureError,
)
from app.models import Chapter, ImportJob
from app.models.import_job import JOB_KIND_BATCH, JOB_KIND_DOCUMENT, JOB_KIND_SINGLE, JOB_PENDING
from app.services import import_jobs
from app.services.chapter_writer import BatchImportResult, get_story, write_batch, write_single_chapter
from app.services.conflicts import find_conflicts, next_chapter_number, normalize_number
from app.services.import_core.batch_sheet import BatchRow, read_batch_sheet
from app.services.import_core.candidate import ChapterCandidate
from app.services.import_core.docx_parser import parse_docx
from app.services.import_core.filename_heuristic import parse_chapter_filename, parse_heading_title
from app.services.import_core.images import extract_images
from app.services.import_core.splitter import DEFAULT_CHAPTER_TITLE, SplitChapter, fragment_has_content, split_into_chapters
from app.services.storage import LocalObjectStorage
from app.services.text_stats import count_words
from app.utils.file_store import source_folder

logger = logging.getLogger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# 单文档导入的进度节点
_STAGE_SOURCE_LOADED = 10
_STAGE_PARSED = 40
_STAGE_WRITTEN = 90


@dataclass
class SingleDocumentPreview:
    candidate: ChapterCandidate
    number_conflict: bool = False
    section_count: int = 1
    warnings: List[str] = field(default_factory=list)


@dataclass
class BatchPreview:
    rows: List[ChapterCandidate]
    conflicts: List[Decimal]


# ---------------------------------------------------------------------------
# 构建候选章节
# ---------------------------------------------------------------------------

def _sections_from_docx(file_bytes: bytes) -> tuple[List[SplitChapter], List[str]]:
    parsed = parse_docx(file_bytes)
    sections = [section for section in split_into_chapters(parsed.html) if fragment_has_content(section.body)]
    if not sections:
        raise ParseFailureError("Document contains no chapter content.")
    return sections, parsed.warnings


def _candidate_from_section(section: SplitChapter, number: Decimal | None, title: str) -> ChapterCandidate:
    body, images = extract_images(section.body)
    return ChapterCandidate(
        chapter_number=number,
        title=title,
        body=body,
        images=images,
        word_count=count_words(body),
    )


def build_single_candidate(file_bytes: bytes, filename: str) -> SingleDocumentPreview:
    """
    Parse one manuscript into the candidate for a single chapter.

    The first heading names the chapter; its number comes from the heading
    text (``Chapter 3: ...``) or, failing that, from the filename.
    """
    sections, warnings = _sections_from_docx(file_bytes)
    first = sections[0]
    from_name = parse_chapter_filename(filename)
    if first.title == DEFAULT_CHAPTER_TITLE:
        number, title = from_name.number, from_name.title or first.title
    else:
        from_heading = parse_heading_title(first.title)
        number = from_heading.number if from_heading.number is not None else from_name.number
        title = from_heading.title
    if len(sections) > 1:
        warnings = warnings + [
            f"Document contains {len(sections)} chapters; only the first is previewed. "
            "Use the document import to create all of them."
        ]
    candidate = _candidate_from_section(first, number, title)
    return SingleDocumentPreview(candidate=candidate, section_count=len(sections), warnings=warnings)


def _row_to_candidate(row: BatchRow) -> ChapterCandidate:
    return ChapterCandidate(
        chapter_number=row.chapter_number,
        title=row.title,
        body=row.content,
        word_count=count_words(row.content),
        is_published=row.is_published,
        is_premium=row.is_premium,
        row_number=row.row_number,
    )


# ---------------------------------------------------------------------------
# 对外操作
# ---------------------------------------------------------------------------

def submit_single_document_preview(
    db: Session, file_bytes: bytes, filename: str, story_id: str
) -> SingleDocumentPreview:
    """Parse a manuscript and report the chapter it would create. Nothing is persisted."""
    get_story(db, story_id)
    preview = build_single_candidate(file_bytes, filename)
    number = preview.candidate.chapter_number
    preview.number_conflict = bool(number is not None and find_conflicts(db, story_id, [number]))
    return preview


def confirm_single_chapter(
    db: Session,
    storage: LocalObjectStorage,
    candidate: ChapterCandidate,
    story_id: str,
    *,
    uploaded_by: str | None = None,
    imported_from: str | None = None,
    renumber_on_conflict: bool = True,
) -> Chapter:
    return write_single_chapter(
        db,
        storage,
        candidate,
        story_id,
        uploaded_by=uploaded_by,
        imported_from=imported_from,
        renumber_on_conflict=renumber_on_conflict,
    )


def submit_batch_preview(db: Session, spreadsheet_bytes: bytes, story_id: str) -> BatchPreview:
    """Validate a batch sheet and report which chapter numbers already exist."""
    get_story(db, story_id)
    rows = [_row_to_candidate(row) for row in read_batch_sheet(spreadsheet_bytes, settings.batch_max_rows)]
    conflicts = find_conflicts(db, story_id, [row.chapter_number for row in rows])
    return BatchPreview(rows=rows, conflicts=conflicts)


def confirm_batch_import(
    db: Session,
    job_id: str,
    story_id: str,
    rows: List[ChapterCandidate],
    *,
    upload_storage: LocalObjectStorage | None = None,
) -> BatchImportResult:
    """
    Run a confirmed batch inside its import job.

    Progress advances one row at a time. The job completes with per-row
    errors in its result; it fails only when nothing could be created.
    """
    job = import_jobs.get_job(db, job_id)
    import_jobs.start_job(db, job)
    try:
        result = write_batch(
            db,
            rows,
            story_id,
            imported_from=job.filename,
            on_progress=lambda done, total: import_jobs.update_progress(
                db, job, import_jobs.progress_for(done, total)
            ),
        )
    except Exception as exc:
        import_jobs.fail_job_by_id(db, job_id, _error_message(exc))
        raise

    summary = {
        "chapter_ids": result.chapter_ids,
        "errors": result.errors,
        "skipped": [float(number) for number in result.skipped],
    }
    if result.created_count == 0 and result.errors:
        import_jobs.fail_job(db, job, f"No chapters were created. {result.errors[0]}", result=summary)
        return result
    import_jobs.complete_job(db, job, chapters_created=result.created_count, result=summary)
    _discard_source(upload_storage, job)
    return result


def get_job_status(db: Session, job_id: str) -> ImportJob:
    return import_jobs.get_job_status(db, job_id)


def list_import_history(db: Session, uploaded_by: str | None = None, story_id: str | None = None) -> List[ImportJob]:
    return import_jobs.list_jobs(db, uploaded_by=uploaded_by, story_id=story_id)


# ---------------------------------------------------------------------------
# 创建任务（上传侧）
# ---------------------------------------------------------------------------

def _stash_source(
    db: Session,
    upload_storage: LocalObjectStorage,
    *,
    kind: str,
    file_bytes: bytes,
    filename: str,
    mime_type: str,
    story_id: str,
    uploaded_by: str,
    import_settings: dict[str, Any] | None = None,
) -> ImportJob:
    stored = upload_storage.store(file_bytes, mime_type, folder=source_folder(kind), name=filename)
    return import_jobs.create_job(
        db,
        kind=kind,
        filename=filename,
        original_size=len(file_bytes),
        mime_type=mime_type,
        uploaded_by=uploaded_by,
        story_id=story_id,
        source_key=stored.key,
        import_settings=import_settings,
    )


def start_single_preview(
    db: Session,
    upload_storage: LocalObjectStorage,
    file_bytes: bytes,
    filename: str,
    story_id: str,
    uploaded_by: str,
    mime_type: str | None = None,
) -> tuple[ImportJob, SingleDocumentPreview]:
    """Keep the upload as the job's source and preview it; the job stays pending until confirmed."""
    get_story(db, story_id)
    job = _stash_source(
        db,
        upload_storage,
        kind=JOB_KIND_SINGLE,
        file_bytes=file_bytes,
        filename=filename,
        mime_type=mime_type or DOCX_MIME,
        story_id=story_id,
        uploaded_by=uploaded_by,
    )
    try:
        preview = submit_single_document_preview(db, file_bytes, filename, story_id)
    except Exception as exc:
        _fail_preview(db, upload_storage, job, exc)
        raise
    return job, preview


def start_batch_preview(
    db: Session,
    upload_storage: LocalObjectStorage,
    file_bytes: bytes,
    filename: str,
    story_id: str,
    uploaded_by: str,
    mime_type: str | None = None,
) -> tuple[ImportJob, BatchPreview]:
    get_story(db, story_id)
    job = _stash_source(
        db,
        upload_storage,
        kind=JOB_KIND_BATCH,
        file_bytes=file_bytes,
        filename=filename,
        mime_type=mime_type or XLSX_MIME,
        story_id=story_id,
        uploaded_by=uploaded_by,
    )
    try:
        preview = submit_batch_preview(db, file_bytes, story_id)
    except Exception as exc:
        _fail_preview(db, upload_storage, job, exc)
        raise
    return job, preview


def start_document_import(
    db: Session,
    upload_storage: LocalObjectStorage,
    file_bytes: bytes,
    filename: str,
    story_id: str,
    uploaded_by: str,
    import_settings: dict[str, Any] | None = None,
    mime_type: str | None = None,
) -> ImportJob:
    get_story(db, story_id)
    return _stash_source(
        db,
        upload_storage,
        kind=JOB_KIND_DOCUMENT,
        file_bytes=file_bytes,
        filename=filename,
        mime_type=mime_type or DOCX_MIME,
        story_id=story_id,
        uploaded_by=uploaded_by,
        import_settings=import_settings,
    )


# 预览失败：任务标记为 failed，并删除已保存的源文件
def _fail_preview(db: Session, upload_storage: LocalObjectStorage, job: ImportJob, exc: Exception) -> None:
    if not isinstance(exc, ImportPipelineError):
        logger.error(f"Preview of import job {job.id} crashed: {exc}", exc_info=True)
    import_jobs.fail_job_by_id(db, job.id, _error_message(exc))
    _discard_source(upload_storage, job)


def _pending_job(db: Session, job_id: str, kind: str) -> ImportJob:
    job = import_jobs.get_job(db, job_id)
    if job.kind != kind:
        raise InvalidJobStateError(f"Import job {job_id} is a {job.kind} import, not {kind}.")
    if job.status != JOB_PENDING:
        raise InvalidJobStateError(f"Import job {job_id} is {job.status} and cannot be confirmed again.")
    return job


# 处理前把确认时的选项写入待处理任务
def record_confirmation(db: Session, job_id: str, kind: str, overrides: dict[str, Any]) -> ImportJob:
    job = _pending_job(db, job_id, kind)
    merged = dict(job.import_settings or {})
    merged.update({key: value for key, value in overrides.items() if value is not None})
    job.import_settings = merged
    db.commit()
    return job


# 未允许重新编号时，已被占用的指定章节号直接拒绝
def confirm_single_job(db: Session, job_id: str, overrides: dict[str, Any]) -> ImportJob:
    job = _pending_job(db, job_id, JOB_KIND_SINGLE)
    number = overrides.get("chapter_number")
    if number is not None and not _flag(overrides.get("renumber_on_conflict", True)):
        conflicts = find_conflicts(db, job.story_id, [number])
        if conflicts:
            raise NumberConflictError(
                f"Chapter {number} already exists in this story.", conflicts=conflicts
            )
    return record_confirmation(db, job_id, JOB_KIND_SINGLE, overrides)


# ---------------------------------------------------------------------------
# 后台处理
# ---------------------------------------------------------------------------

def _error_message(exc: Exception) -> str:
    if isinstance(exc, ImportPipelineError):
        if exc.errors:
            return f"{exc.message} {'; '.join(exc.errors)}"
        return exc.message
    return str(exc) or type(exc).__name__


def _read_source(upload_storage: LocalObjectStorage, job: ImportJob) -> bytes:
    if not job.source_key:
        raise StorageFailureError(f"Import job {job.id} has no stored source file.")
    return upload_storage.read(job.source_key)


def _discard_source(upload_storage: LocalObjectStorage | None, job: ImportJob) -> None:
    if upload_storage is None or not job.source_key:
        return
    try:
        upload_storage.delete(job.source_key)
    except StorageFailureError as exc:
        logger.error(f"Error cleaning up temporary file {job.source_key}: {exc}")


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def process_single_import(
    db: Session,
    storage: LocalObjectStorage,
    upload_storage: LocalObjectStorage,
    job_id: str,
) -> Chapter:
    """Re-read a confirmed single-document job's source and write its chapter."""
    job = import_jobs.get_job(db, job_id)
    import_jobs.start_job(db, job)
    try:
        file_bytes = _read_source(upload_storage, job)
        import_jobs.update_progress(db, job, _STAGE_SOURCE_LOADED)

        candidate = build_single_candidate(file_bytes, job.filename).candidate
        options = job.import_settings or {}
        if options.get("title"):
            candidate.title = str(options["title"]).strip()
        if options.get("chapter_number") is not None:
            candidate.chapter_number = normalize_number(options["chapter_number"])
        candidate.is_published = _flag(options.get("import_as_published", False))
        candidate.is_premium = _flag(options.get("import_as_premium", False))
        import_jobs.update_progress(db, job, _STAGE_PARSED)

        chapter = confirm_single_chapter(
            db,
            storage,
            candidate,
            job.story_id,
            uploaded_by=job.uploaded_by,
            imported_from=job.filename,
            renumber_on_conflict=_flag(options.get("renumber_on_conflict", True)),
        )
        import_jobs.update_progress(db, job, _STAGE_WRITTEN)
    except Exception as exc:
        import_jobs.fail_job_by_id(db, job_id, _error_message(exc))
        raise

    import_jobs.complete_job(
        db,
        job,
        chapters_created=1,
        images_extracted=len(candidate.images),
        result={
            "chapter_ids": [chapter.id],
            "chapter_number": float(chapter.chapter_number),
            "images_relocated": chapter.image_count,
        },
    )
    _discard_source(upload_storage, job)
    return chapter


def process_batch_import(
    db: Session,
    upload_storage: LocalObjectStorage,
    job_id: str,
    rows: List[ChapterCandidate] | None = None,
) -> BatchImportResult:
    """Run a confirmed batch job; without explicit rows the stored sheet is read again."""
    job = import_jobs.get_job(db, job_id)
    if rows is None:
        try:
            rows = [_row_to_candidate(row) for row in read_batch_sheet(_read_source(upload_storage, job), settings.batch_max_rows)]
        except Exception as exc:
            import_jobs.fail_job_by_id(db, job_id, _error_message(exc))
            raise
    return confirm_batch_import(db, job_id, job.story_id, rows, upload_storage=upload_storage)


def process_document_import(
    db: Session,
    storage: LocalObjectStorage,
    upload_storage: LocalObjectStorage,
    job_id: str,
) -> List[Chapter]:
    """
    Turn every chapter of an uploaded manuscript into a chapter of the story.

    Numbers run consecutively from ``chapter_number_start`` (default: after
    the story's highest); a taken number is moved past the highest. The
    publish/premium settings apply to every chapter.
    """
    job = import_jobs.get_job(db, job_id)
    import_jobs.start_job(db, job)
    created: List[Chapter] = []
    images_extracted = 0
    try:
        file_bytes = _read_source(upload_storage, job)
        sections, _warnings = _sections_from_docx(file_bytes)
        options = job.import_settings or {}
        start = options.get("chapter_number_start")
        number = normalize_number(start) if start is not None else next_chapter_number(db, job.story_id)
        is_published = _flag(options.get("import_as_published", False))
        is_premium = _flag(options.get("import_as_premium", False))

        for index, section in enumerate(sections, start=1):
            candidate = _candidate_from_section(section, number, section.title)
            candidate.is_published = is_published
            candidate.is_premium = is_premium
            chapter = confirm_single_chapter(
                db, storage, candidate, job.story_id, uploaded_by=job.uploaded_by, imported_from=job.filename
            )
            created.append(chapter)
            images_extracted += len(candidate.images)
            number = normalize_number(chapter.chapter_number) + 1
            import_jobs.update_progress(db, job, import_jobs.progress_for(index, len(sections)))
    except Exception as exc:
        import_jobs.fail_job_by_id(db, job_id, _error_message(exc))
        job = import_jobs.get_job(db, job_id)
        import_jobs.update_counters(db, job, len(created), images_extracted)
        raise

    import_jobs.complete_job(
        db,
        job,
        chapters_created=len(created),
        images_extracted=images_extracted,
        result={
            "chapters": [
                {"id": chapter.id, "title": chapter.title, "word_count": chapter.word_count}
                for chapter in created
            ]
        },
    )
    _discard_source(upload_storage, job)
    return created
