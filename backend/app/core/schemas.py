from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.chapter import MAX_CHAPTER_NUMBER

JobStatus = Literal["pending", "processing", "completed", "failed"]
JobKind = Literal["single", "batch", "document"]


class ChapterCandidateOut(BaseModel):
    chapter_number: Optional[float] = None
    title: str
    content: str
    word_count: int = 0
    estimated_read_time: int = 0
    image_count: int = 0
    is_published: bool = False
    is_premium: bool = False
    row_number: Optional[int] = None


class SingleDocumentPreviewResponse(BaseModel):
    job_id: str
    story_id: str
    filename: str
    chapter: ChapterCandidateOut
    number_conflict: bool = False
    section_count: int = 1
    warnings: List[str] = Field(default_factory=list)


class SingleConfirmRequest(BaseModel):
    title: Optional[str] = None
    chapter_number: Optional[Decimal] = Field(default=None, gt=0, le=MAX_CHAPTER_NUMBER)
    is_published: bool = False
    is_premium: bool = False
    # 为 False 时，已被占用的指定章节号直接拒绝而不是顺延
    renumber_on_conflict: bool = True

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class BatchRowIn(BaseModel):
    chapter_number: Decimal = Field(gt=0, le=MAX_CHAPTER_NUMBER)
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    is_published: bool = False
    is_premium: bool = False


class BatchPreviewResponse(BaseModel):
    job_id: str
    story_id: str
    filename: str
    rows: List[ChapterCandidateOut]
    conflicts: List[float] = Field(default_factory=list)


class BatchConfirmRequest(BaseModel):
    # 未提供 rows 时按预览的表格导入
    rows: Optional[List[BatchRowIn]] = None


class DocumentImportSettings(BaseModel):
    chapter_number_start: Optional[Decimal] = Field(default=None, gt=0, le=MAX_CHAPTER_NUMBER)
    import_as_published: bool = False
    import_as_premium: bool = False


class ImportAcceptedResponse(BaseModel):
    job_id: str
    status: JobStatus
    status_url: str


class ImportJobOut(BaseModel):
    job_id: str
    kind: JobKind
    filename: str
    original_size: int
    mime_type: Optional[str] = None
    story_id: Optional[str] = None
    uploaded_by: str
    status: JobStatus
    progress: int = 0
    chapters_created: int = 0
    images_extracted: int = 0
    error_message: Optional[str] = None
    import_settings: Dict[str, Any] = Field(default_factory=dict)
    result: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    processing_started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ImportHistoryResponse(BaseModel):
    jobs: List[ImportJobOut]
