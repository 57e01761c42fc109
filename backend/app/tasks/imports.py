from __future__ import annotations

import logging
from typing import Any, Dict, List

from app.core.database import SessionLocal
from app.services.import_core.candidate import ChapterCandidate
from app.services.importer import process_batch_import, process_document_import, process_single_import
from app.services.storage import get_media_storage, get_upload_storage
from app.services.text_stats import count_words

logger = logging.getLogger(__name__)


def _db_session():
    return SessionLocal()


def _rows_to_candidates(rows: List[Dict[str, Any]]) -> List[ChapterCandidate]:
    return [
        ChapterCandidate(
            chapter_number=row["chapter_number"],
            title=row["title"],
            body=row["content"],
            word_count=count_words(row["content"]),
            is_published=bool(row.get("is_published", False)),
            is_premium=bool(row.get("is_premium", False)),
            row_number=index,
        )
        for index, row in enumerate(rows, start=1)
    ]


# 已确认单文档导入的后台执行入口
def run_single_import(job_id: str) -> None:
    db = _db_session()
    try:
        chapter = process_single_import(db, get_media_storage(), get_upload_storage(), job_id)
        logger.info(f"Import job {job_id} created chapter {chapter.id}")
    except Exception:
        logger.exception(f"Single import job {job_id} failed")
    finally:
        db.close()


# 已确认批量导入的后台执行入口；rows=None 时重新读取上传的表格
def run_batch_import(job_id: str, rows: List[Dict[str, Any]] | None = None) -> None:
    db = _db_session()
    try:
        candidates = _rows_to_candidates(rows) if rows is not None else None
        result = process_batch_import(db, get_upload_storage(), job_id, candidates)
        logger.info(
            f"Import job {job_id}: {result.created_count} created, "
            f"{len(result.skipped)} skipped, {len(result.errors)} failed"
        )
    except Exception:
        logger.exception(f"Batch import job {job_id} failed")
    finally:
        db.close()


def run_document_import(job_id: str) -> None:
    db = _db_session()
    try:
        chapters = process_document_import(db, get_media_storage(), get_upload_storage(), job_id)
        logger.info(f"Import job {job_id} created {len(chapters)} chapter(s)")
    except Exception:
        logger.exception(f"Document import job {job_id} failed")
    finally:
        db.close()
