# Python
# 功能：按顶层 h1 标题把转换后的稿件 HTML 拆分为章节

from dataclasses import dataclass
from typing import List

from bs4 import BeautifulSoup, Tag

# 文档完全没有标题时使用的默认标题
DEFAULT_CHAPTER_TITLE = "Imported Chapter"


@dataclass
class SplitChapter:
    title: str
    body: str


def fragment_has_content(markup: str) -> bool:
    if not markup.strip():
        return False
    soup = BeautifulSoup(markup, "html.parser")
    return bool(soup.get_text(strip=True)) or soup.find("img") is not None


def split_into_chapters(html: str) -> List[SplitChapter]:
    """
    Each top-level ``<h1>`` opens a chapter that runs until the next one.

    Headings with an empty title or an empty body are dropped. Markup before
    the first heading belongs to no chapter. With no headings the whole
    document is one chapter titled ``Imported Chapter``.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    nodes = list(soup.contents)
    if not any(isinstance(node, Tag) and node.name == "h1" for node in nodes):
        return [SplitChapter(title=DEFAULT_CHAPTER_TITLE, body=(html or "").strip())]

    chapters: List[SplitChapter] = []
    title: str | None = None
    parts: List[str] = []

    def _flush() -> None:
        if title is None:
            return
        body = "".join(parts).strip()
        if title and fragment_has_content(body):
            chapters.append(SplitChapter(title=title, body=body))

    for node in nodes:
        if isinstance(node, Tag) and node.name == "h1":
            _flush()
            title = node.get_text(" ", strip=True)
            parts = []
            continue
        if title is None:
            # 前言
            continue
        parts.append(str(node))
    _flush()
    return chapters
