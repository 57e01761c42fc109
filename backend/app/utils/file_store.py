from __future__ import annotations

from uuid import uuid4


# 导入任务 id
def new_job_id() -> str:
    return f"imp_{uuid4().hex}"


# 章节主键
def new_chapter_id() -> str:
    return f"ch_{uuid4().hex}"


# 媒体文件 / 章节媒体关联 id
def new_media_id() -> str:
    return f"med_{uuid4().hex}"


# 任务临时源文件的存储目录
def source_folder(kind: str) -> str:
    return f"imports/{kind}"


# 任务迁移图片的存储目录
def chapter_media_folder(story_id: str) -> str:
    return f"chapters/{story_id}"
