from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session
from starlette.responses import Response

from app.core.auth import UserContext, require_admin
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import BatchTooLargeError, EmptyBatchError, FileTooLargeError, UnsupportedFormatError
from app.core.schemas import (
    BatchConfirmRequest,
    BatchPreviewResponse,
    ChapterCandidateOut,
    DocumentImportSettings,
    ImportAcceptedResponse,
    ImportHistoryResponse,
    ImportJobOut,
    SingleConfirmRequest,
    SingleDocumentPreviewResponse,
)
from app.models import ImportJob
from app.models.chapter import MAX_CHAPTER_NUMBER
from app.models.import_job import JOB_KIND_BATCH
from app.services import importer
from app.services.import_core.batch_sheet import generate_batch_template
from app.services.import_core.candidate import ChapterCandidate
from app.services.storage import LocalObjectStorage, get_upload_storage
from app.services.text_stats import reading_time_minutes
from app.tasks.imports import run_batch_import, run_document_import, run_single_import

logger = logging.getLogger(__name__)

# API 路由：章节导入接口
router = APIRouter()

TEMPLATE_FILENAME = "chapter-import-template.xlsx"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _job_out(job: ImportJob) -> ImportJobOut:
    return ImportJobOut(
        job_id=job.id,
        kind=job.kind,
        filename=job.filename,
        original_size=job.original_size,
        mime_type=job.mime_type,
        story_id=job.story_id,
        uploaded_by=job.uploaded_by,
        status=job.status,
        progress=job.progress or 0,
        chapters_created=job.chapters_created or 0,
        images_extracted=job.images_extracted or 0,
        error_message=job.error_message,
        import_settings=job.import_settings or {},
        result=job.result_json or {},
        created_at=_iso(job.created_at),
        processing_started_at=_iso(job.processing_started_at),
        completed_at=_iso(job.completed_at),
    )


def _candidate_out(candidate: ChapterCandidate) -> ChapterCandidateOut:
    number = candidate.chapter_number
    return ChapterCandidateOut(
        chapter_number=float(number) if number is not None else None,
        title=candidate.title,
        content=candidate.body,
        word_count=candidate.word_count,
        estimated_read_time=reading_time_minutes(candidate.word_count),
        image_count=len(candidate.images),
        is_published=candidate.is_published,
        is_premium=candidate.is_premium,
        row_number=candidate.row_number,
    )


def _accepted(request: Request, job: ImportJob) -> ImportAcceptedResponse:
    return ImportAcceptedResponse(
        job_id=job.id,
        status=job.status,
        status_url=str(request.url_for("get_import_job", job_id=job.id)),
    )


# 检查扩展名与大小，然后读取整个上传文件
def _read_upload(file: UploadFile, extensions: tuple[str, ...], max_bytes: int) -> tuple[str, bytes]:
    filename = os.path.basename(file.filename or "")
    if not filename or not filename.lower().endswith(extensions):
        raise UnsupportedFormatError(f"Only {', '.join(extensions)} files are supported.")
    data = file.file.read()
    if len(data) > max_bytes:
        raise FileTooLargeError(f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit.")
    if not data:
        raise UnsupportedFormatError("Uploaded file is empty.")
    return filename, data


# 上传单章稿件并预览将要创建的章节
@router.post("/stories/{story_id}/single/preview", response_model=SingleDocumentPreviewResponse)
def preview_single_document(
    story_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    upload_storage: LocalObjectStorage = Depends(get_upload_storage),
    user: UserContext = Depends(require_admin),
) -> SingleDocumentPreviewResponse:
    filename, data = _read_upload(file, (".docx",), settings.single_upload_max_bytes)
    job, preview = importer.start_single_preview(
        db, upload_storage, data, filename, story_id, user.user_id, mime_type=file.content_type
    )
    return SingleDocumentPreviewResponse(
        job_id=job.id,
        story_id=story_id,
        filename=filename,
        chapter=_candidate_out(preview.candidate),
        number_conflict=preview.number_conflict,
        section_count=preview.section_count,
        warnings=preview.warnings,
    )


@router.post("/{job_id}/single/confirm", response_model=ImportAcceptedResponse, status_code=202)
def confirm_single_document(
    job_id: str,
    payload: SingleConfirmRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> ImportAcceptedResponse:
    overrides = {
        "title": payload.title,
        "chapter_number": str(payload.chapter_number) if payload.chapter_number is not None else None,
        "import_as_published": payload.is_published,
        "import_as_premium": payload.is_premium,
        "renumber_on_conflict": payload.renumber_on_conflict,
    }
    job = importer.confirm_single_job(db, job_id, overrides)
    background_tasks.add_task(run_single_import, job.id)
    logger.info(f"User {user.user_id} confirmed single import {job.id}")
    return _accepted(request, job)


# 上传批量表格，校验每一行并报告章节号冲突
@router.post("/stories/{story_id}/batch/preview", response_model=BatchPreviewResponse)
def preview_batch(
    story_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    upload_storage: LocalObjectStorage = Depends(get_upload_storage),
    user: UserContext = Depends(require_admin),
) -> BatchPreviewResponse:
    filename, data = _read_upload(file, (".xlsx",), settings.batch_upload_max_bytes)
    job, preview = importer.start_batch_preview(
        db, upload_storage, data, filename, story_id, user.user_id, mime_type=file.content_type
    )
    return BatchPreviewResponse(
        job_id=job.id,
        story_id=story_id,
        filename=filename,
        rows=[_candidate_out(row) for row in preview.rows],
        conflicts=[float(number) for number in preview.conflicts],
    )


@router.post("/{job_id}/batch/confirm", response_model=ImportAcceptedResponse, status_code=202)
def confirm_batch(
    job_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[BatchConfirmRequest] = None,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> ImportAcceptedResponse:
    rows = payload.rows if payload else None
    if rows is not None and not rows:
        raise EmptyBatchError("Batch contains no chapter rows.")
    if rows is not None and len(rows) > settings.batch_max_rows:
        raise BatchTooLargeError(f"At most {settings.batch_max_rows} chapters are allowed per batch.")
    job = importer.record_confirmation(db, job_id, JOB_KIND_BATCH, {})
    row_dicts = [row.model_dump() for row in rows] if rows is not None else None
    background_tasks.add_task(run_batch_import, job.id, row_dicts)
    logger.info(f"User {user.user_id} confirmed batch import {job.id}")
    return _accepted(request, job)


# 在一个任务中导入稿件的全部章节
@router.post("/stories/{story_id}/document", response_model=ImportAcceptedResponse, status_code=202)
def import_document(
    story_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    chapter_number_start: Optional[Decimal] = Form(default=None, gt=0, le=MAX_CHAPTER_NUMBER),
    import_as_published: bool = Form(default=False),
    import_as_premium: bool = Form(default=False),
    db: Session = Depends(get_db),
    upload_storage: LocalObjectStorage = Depends(get_upload_storage),
    user: UserContext = Depends(require_admin),
) -> ImportAcceptedResponse:
    options = DocumentImportSettings(
        chapter_number_start=chapter_number_start,
        import_as_published=import_as_published,
        import_as_premium=import_as_premium,
    )
    filename, data = _read_upload(file, (".docx",), settings.document_upload_max_bytes)
    import_settings = {
        "chapter_number_start": (
            str(options.chapter_number_start) if options.chapter_number_start is not None else None
        ),
        "import_as_published": options.import_as_published,
        "import_as_premium": options.import_as_premium,
    }
    job = importer.start_document_import(
        db,
        upload_storage,
        data,
        filename,
        story_id,
        user.user_id,
        import_settings=import_settings,
        mime_type=file.content_type,
    )
    background_tasks.add_task(run_document_import, job.id)
    return _accepted(request, job)


@router.get("/template")
def download_template(user: UserContext = Depends(require_admin)) -> Response:
    return Response(
        content=generate_batch_template(),
        media_type=importer.XLSX_MIME,
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


# 当前用户的导入历史，按时间倒序
@router.get("", response_model=ImportHistoryResponse)
def list_imports(
    story_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> ImportHistoryResponse:
    jobs = importer.list_import_history(db, uploaded_by=user.user_id, story_id=story_id)
    return ImportHistoryResponse(jobs=[_job_out(job) for job in jobs])


@router.get("/{job_id}", response_model=ImportJobOut, name="get_import_job")
def get_import_job(
    job_id: str,
    db: Session = Depends(get_db),
    user: UserContext = Depends(require_admin),
) -> ImportJobOut:
    return _job_out(importer.get_job_status(db, job_id))
