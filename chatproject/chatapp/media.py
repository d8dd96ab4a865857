# chatapp/media.py
"""Attachment intake: type/size checks before anything leaves the machine."""
from __future__ import annotations

import base64
import io
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from voiceapp.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
THUMBNAIL_MAX_PX = 200

ALLOWED_TYPES = {
    "image/jpeg", "image/png", "image/gif", "image/webp",
    "video/mp4", "video/webm", "video/ogg",
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/x-wav", "audio/ogg", "audio/webm",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
}
mimetypes.add_type("application/msword", ".doc")
mimetypes.add_type("application/vnd.openxmlformats-officedocument.wordprocessingml.document", ".docx")
mimetypes.add_type("image/webp", ".webp")

# Gemini takes these inline; .doc/.docx are only referenced by name.
INLINE_MEDIA_PREFIXES = ("image/", "video/", "audio/", "application/pdf", "text/plain")


@dataclass(frozen=True)
class Attachment:
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_inline_media(self) -> bool:
        return self.mime_type.startswith(INLINE_MEDIA_PREFIXES)

    @property
    def kind(self) -> str:
        return self.mime_type.split("/")[0] if self.is_inline_media else "file"

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: Optional[str] = None) -> "Attachment":
        guessed = mime_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
        return cls(name=name, mime_type=guessed, data=data)

    @classmethod
    def from_path(cls, path: Union[str, Path], mime_type: Optional[str] = None) -> "Attachment":
        p = Path(path).expanduser()
        return cls.from_bytes(p.name, p.read_bytes(), mime_type)


def validate_attachment(attachment: Attachment, max_bytes: int = MAX_UPLOAD_BYTES) -> Attachment:
    if attachment.size > max_bytes:
        raise ValidationError("size", f"File size exceeds {max_bytes // (1024 * 1024)}MB limit")
    if attachment.mime_type not in ALLOWED_TYPES:
        raise ValidationError("type", f"File type not supported: {attachment.mime_type}")
    return attachment


def make_thumbnail(attachment: Attachment, max_px: int = THUMBNAIL_MAX_PX) -> Optional[str]:
    """PNG data URI scaled to fit ``max_px``; None for non-images or unreadable data."""
    if not attachment.is_image:
        return None
    try:
        with Image.open(io.BytesIO(attachment.data)) as img:
            img = img.convert("RGBA")
            ratio = min(max_px / img.width, max_px / img.height)
            size = (max(1, int(img.width * ratio)), max(1, int(img.height * ratio)))
            thumb = img.resize(size)
            buf = io.BytesIO()
            thumb.save(buf, format="PNG")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Error generating thumbnail for %s: %s", attachment.name, e)
        return None
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
