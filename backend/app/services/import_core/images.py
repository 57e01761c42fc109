# Python
# 功能：从章节 HTML 中提取 data URI 图片，之后迁移到存储

import base64
import binascii
import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup

from app.core.errors import StorageFailureError

logger = logging.getLogger(__name__)

# 标记已清空图片为第 N 张提取图片占位符的属性
PLACEHOLDER_ATTR = "data-import-image"

_DATA_URI = re.compile(r"^data:([^;,]+);base64,(.*)$", re.IGNORECASE | re.DOTALL)


@dataclass
class ExtractedImage:
    data: bytes
    content_type: str
    name: str


@dataclass
class StoredImage:
    key: str
    url: str
    thumbnail_url: str | None
    image: ExtractedImage


def _image_name(index: int, content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type) or ".png"
    if ext == ".jpe":
        ext = ".jpg"
    return f"image_{index}{ext}"


def extract_images(html: str) -> Tuple[str, List[ExtractedImage]]:
    """
    Replace every base64 ``<img>`` with an empty placeholder.

    Returns the rewritten HTML and the decoded images in document order; the
    placeholder for ``images[i]`` carries ``data-import-image="i"``.
    """
    if not html or "data:" not in html:
        return html, []
    soup = BeautifulSoup(html, "html.parser")
    images: List[ExtractedImage] = []
    for img in soup.find_all("img"):
        src = img.get("src") or ""
        match = _DATA_URI.match(src.strip())
        if not match:
            continue
        content_type = match.group(1).strip().lower()
        try:
            payload = base64.b64decode(re.sub(r"\s+", "", match.group(2)), validate=True)
        except (binascii.Error, ValueError):
            logger.warning(f"Dropping undecodable embedded image ({content_type})")
            img["src"] = ""
            continue
        index = len(images)
        images.append(
            ExtractedImage(data=payload, content_type=content_type, name=_image_name(index, content_type))
        )
        img["src"] = ""
        img[PLACEHOLDER_ATTR] = str(index)
    return str(soup), images


def relocate_images(
    html: str,
    images: List[ExtractedImage],
    store: Callable[[ExtractedImage], StoredImage],
) -> Tuple[str, List[Optional[StoredImage]]]:
    """
    Store each extracted image and point its placeholder at the permanent URL.

    A failed upload is logged and its placeholder stays empty; the returned
    list holds ``None`` at that position.
    """
    stored: List[Optional[StoredImage]] = []
    for index, image in enumerate(images):
        try:
            stored.append(store(image))
        except StorageFailureError as exc:
            logger.warning(f"Image {image.name} upload failed, leaving placeholder empty: {exc}")
            stored.append(None)

    if not images:
        return html, stored

    soup = BeautifulSoup(html, "html.parser")
    for img in soup.find_all("img"):
        marker = img.get(PLACEHOLDER_ATTR)
        if marker is None:
            continue
        del img[PLACEHOLDER_ATTR]
        try:
            position = int(marker)
        except ValueError:
            continue
        if 0 <= position < len(stored) and stored[position] is not None:
            img["src"] = stored[position].url
            img["alt"] = img.get("alt") or ""
    return str(soup), stored
