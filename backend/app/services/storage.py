from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from uuid import uuid4

from app.core.config import settings
from app.core.errors import StorageFailureError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    key: str
    url: str
    thumbnail_url: str | None
    size: int


def _safe_folder(folder: str) -> str:
    parts = [part for part in folder.replace("\\", "/").split("/") if part not in ("", ".", "..")]
    return "/".join(parts)


class LocalObjectStorage:
    """
    Object storage on the local filesystem.

    Keys are ``<folder>/<uuid><ext>`` relative to ``root``; public links are
    ``url_prefix/<key>``. Thumbnail links carry a resize hint for the media
    proxy in front of the static mount.
    """

    def __init__(self, root: str, url_prefix: str, thumbnail_size: int = 300):
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")
        self.thumbnail_size = thumbnail_size

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise StorageFailureError(f"Invalid storage key: {key}")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def thumbnail_for(self, key: str) -> str:
        size = self.thumbnail_size
        return f"{self.url_for(key)}?w={size}&h={size}&fit=fill"

    # 保存字节内容，返回永久地址与缩略图地址
    def store(self, data: bytes, content_type: str, folder: str = "misc", name: str | None = None) -> StoredObject:
        ext = os.path.splitext(name or "")[1] or mimetypes.guess_extension(content_type or "") or ".bin"
        key = f"{_safe_folder(folder) or 'misc'}/{uuid4().hex}{ext}"
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            raise StorageFailureError(f"Failed to store {key}: {exc}") from exc
        is_image = (content_type or "").startswith("image/")
        return StoredObject(
            key=key,
            url=self.url_for(key),
            thumbnail_url=self.thumbnail_for(key) if is_image else None,
            size=len(data),
        )

    def read(self, key: str) -> bytes:
        try:
            with open(self._path(key), "rb") as handle:
                return handle.read()
        except OSError as exc:
            raise StorageFailureError(f"Failed to read {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageFailureError(f"Failed to delete {key}: {exc}") from exc


# 持久媒体存储（迁移后的图片）
def get_media_storage() -> LocalObjectStorage:
    return LocalObjectStorage(settings.media_dir, settings.media_url_prefix, settings.thumbnail_size)


# 上传源文件的临时存储
def get_upload_storage() -> LocalObjectStorage:
    return LocalObjectStorage(settings.upload_dir, "")
