from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidJobStateError, JobNotFoundError
from app.models import ImportJob
from app.models.import_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    JOB_TERMINAL_STATUSES,
)
from app.utils.file_store import new_job_id

logger = logging.getLogger(__name__)


def create_job(
    db: Session,
    *,
    kind: str,
    filename: str,
    original_size: int,
    mime_type: str | None,
    uploaded_by: str,
    story_id: str | None = None,
    source_key: str | None = None,
    import_settings: dict[str, Any] | None = None,
) -> ImportJob:
    job = ImportJob(
        id=new_job_id(),
        kind=kind,
        filename=filename,
        original_size=original_size,
        mime_type=mime_type,
        story_id=story_id,
        uploaded_by=uploaded_by,
        status=JOB_PENDING,
        progress=0,
        chapters_created=0,
        images_extracted=0,
        import_settings=import_settings or {},
        source_key=source_key,
        created_at=datetime.utcnow(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"Import job {job.id} created ({kind}, {filename}, {original_size} bytes)")
    return job


def get_job(db: Session, job_id: str) -> ImportJob:
    job = db.get(ImportJob, job_id)
    if not job:
        raise JobNotFoundError(f"Import job {job_id} not found.")
    return job


# 供轮询使用的只读状态查询
def get_job_status(db: Session, job_id: str) -> ImportJob:
    return get_job(db, job_id)


def list_jobs(
    db: Session,
    uploaded_by: str | None = None,
    story_id: str | None = None,
    limit: int | None = None,
) -> list[ImportJob]:
    query = db.query(ImportJob)
    if uploaded_by:
        query = query.filter(ImportJob.uploaded_by == uploaded_by)
    if story_id:
        query = query.filter(ImportJob.story_id == story_id)
    return (
        query.order_by(ImportJob.created_at.desc())
        .limit(limit or settings.import_history_limit)
        .all()
    )


# pending -> processing
def start_job(db: Session, job: ImportJob) -> ImportJob:
    if job.status != JOB_PENDING:
        raise InvalidJobStateError(f"Import job {job.id} is {job.status}; only pending jobs can start.")
    job.status = JOB_PROCESSING
    job.progress = 0
    job.processing_started_at = datetime.utcnow()
    db.commit()
    return job


# 任务处理中时进度只增不减
def update_progress(db: Session, job: ImportJob, progress: int) -> ImportJob:
    if job.status != JOB_PROCESSING:
        return job
    value = max(0, min(100, int(progress)))
    if value > (job.progress or 0):
        job.progress = value
        db.commit()
    return job


def progress_for(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return round(done / total * 100)


def update_counters(db: Session, job: ImportJob, chapters_created: int, images_extracted: int) -> ImportJob:
    job.chapters_created = chapters_created
    job.images_extracted = images_extracted
    db.commit()
    return job


# processing -> completed
def complete_job(
    db: Session,
    job: ImportJob,
    *,
    chapters_created: int,
    images_extracted: int = 0,
    result: dict[str, Any] | None = None,
) -> ImportJob:
    if job.status != JOB_PROCESSING:
        raise InvalidJobStateError(f"Import job {job.id} is {job.status}; only processing jobs can complete.")
    job.status = JOB_COMPLETED
    job.progress = 100
    job.chapters_created = chapters_created
    job.images_extracted = images_extracted
    job.result_json = result or {}
    job.completed_at = datetime.utcnow()
    db.commit()
    logger.info(f"Import job {job.id} completed: {chapters_created} chapter(s), {images_extracted} image(s)")
    return job


# pending|processing -> failed，保留错误信息供审计
def fail_job(db: Session, job: ImportJob, message: str, result: dict[str, Any] | None = None) -> ImportJob:
    if job.status in JOB_TERMINAL_STATUSES:
        raise InvalidJobStateError(f"Import job {job.id} already finished as {job.status}.")
    job.status = JOB_FAILED
    job.error_message = message or "Unknown error"
    if result is not None:
        job.result_json = result
    job.completed_at = datetime.utcnow()
    db.commit()
    logger.warning(f"Import job {job.id} failed: {job.error_message}")
    return job


# 会话回滚后重新加载任务并标记为失败
def fail_job_by_id(db: Session, job_id: str, message: str) -> None:
    db.rollback()
    job = db.get(ImportJob, job_id)
    if job is None or job.status in JOB_TERMINAL_STATUSES:
        return
    fail_job(db, job, message)
