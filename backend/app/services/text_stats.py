from __future__ import annotations

import math
import re

from bs4 import BeautifulSoup

from app.core.config import settings


# HTML 片段的纯文本
def html_to_text(html: str) -> str:
    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text(" ", strip=True)


# 统计文本单位：中日韩字符逐字计数，英文按单词计数
def count_text_units(text: str) -> int:
    chinese_count = len(re.findall(r"[\u4e00-\u9fff]", text))
    english_words = len(re.findall(r"[A-Za-z0-9]+(?:'[A-Za-z]+)?", text))
    return chinese_count + english_words


# 章节内容字数
def count_words(html: str) -> int:
    return count_text_units(html_to_text(html))


# 预计阅读时长（整分钟）
def reading_time_minutes(word_count: int, words_per_minute: int | None = None) -> int:
    wpm = words_per_minute or settings.words_per_minute
    if word_count <= 0 or wpm <= 0:
        return 0
    return math.ceil(word_count / wpm)


# 生成 URL 友好的 slug：小写、仅保留单词字符、单个连字符
def generate_slug(text: str) -> str:
    slug = (text or "").lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")
