# Python
# 功能：两种导入方式共用的内存章节候选

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from app.services.import_core.images import ExtractedImage


@dataclass
class ChapterCandidate:
    chapter_number: Optional[Decimal]
    title: str
    body: str
    images: List[ExtractedImage] = field(default_factory=list)
    word_count: int = 0
    is_published: bool = False
    is_premium: bool = False
    # 候选章节所在的表格行（仅批量导入）
    row_number: Optional[int] = None
