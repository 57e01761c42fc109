# Python
# 功能：把 .docx 稿件转换为 HTML（标题、段落、data URI 图片）

import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import List

import mammoth

from app.core.errors import ParseFailureError, UnsupportedFormatError

logger = logging.getLogger(__name__)

# 所有 Word 文档包都包含的主文档部件
_MAIN_DOCUMENT_PART = "word/document.xml"


@dataclass
class ParsedDocument:
    html: str
    warnings: List[str] = field(default_factory=list)


# 交给 mammoth 前先确认内容是 Word 文档包
def _ensure_docx_package(data: bytes) -> None:
    if not data:
        raise UnsupportedFormatError("Uploaded file is empty.")
    buffer = io.BytesIO(data)
    if not zipfile.is_zipfile(buffer):
        raise UnsupportedFormatError("File is not a DOCX document.")
    try:
        with zipfile.ZipFile(buffer) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile as exc:
        raise UnsupportedFormatError("File is not a DOCX document.") from exc
    if _MAIN_DOCUMENT_PART not in names:
        raise UnsupportedFormatError("Archive has no Word document part.")


def parse_docx(data: bytes) -> ParsedDocument:
    """
    Convert DOCX bytes to HTML.

    Images are inlined as ``data:<type>;base64,...`` sources (mammoth's default
    image conversion); mammoth's messages are returned as warnings.
    """
    _ensure_docx_package(data)
    try:
        result = mammoth.convert_to_html(io.BytesIO(data))
    except Exception as exc:
        logger.error(f"DOCX conversion failed: {exc}")
        raise ParseFailureError("Failed to parse DOCX file.") from exc

    warnings = [str(getattr(message, "message", message)) for message in result.messages]
    if warnings:
        logger.warning(f"DOCX parsing produced {len(warnings)} warning(s): {warnings[:5]}")
    return ParsedDocument(html=result.value or "", warnings=warnings)
