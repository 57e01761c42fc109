from app.models.story import Story
from app.models.chapter import Chapter
from app.models.media import ChapterMedia, MediaFile
from app.models.import_job import ImportJob

__all__ = [
    "Story",
    "Chapter",
    "ChapterMedia",
    "MediaFile",
    "ImportJob",
]
