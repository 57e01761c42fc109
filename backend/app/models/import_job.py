from __future__ import annotations

from datetime import datetime
from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_TERMINAL_STATUSES = (JOB_COMPLETED, JOB_FAILED)

# 导入方式
JOB_KIND_SINGLE = "single"
JOB_KIND_BATCH = "batch"
JOB_KIND_DOCUMENT = "document"


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    kind: Mapped[str] = mapped_column(String, default=JOB_KIND_DOCUMENT)
    filename: Mapped[str] = mapped_column(String, nullable=False)
    original_size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[str | None] = mapped_column(String, nullable=True)
    story_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    uploaded_by: Mapped[str] = mapped_column(String, index=True, nullable=False)
    status: Mapped[str] = mapped_column(String, index=True, default=JOB_PENDING)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    chapters_created: Mapped[int] = mapped_column(Integer, default=0)
    images_extracted: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # chapter_number_start / import_as_published / import_as_premium 以及确认时的覆盖项
    import_settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # 临时保存的源文件存储键
    source_key: Mapped[str | None] = mapped_column(String, nullable=True)
    # 已创建章节 id、逐行错误与跳过的章节号
    result_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
