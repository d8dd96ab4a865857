from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .media import Attachment

USER = "user"
ASSISTANT = "assistant"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    persona: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
    attachment: Optional[Attachment] = None
    media_preview: Optional[str] = None
    pending: bool = False

    @property
    def is_user(self) -> bool:
        return self.role == USER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "persona": self.persona,
            "created_at": self.created_at.isoformat(),
            "attachment": self.attachment.name if self.attachment else None,
            "media_preview": self.media_preview,
            "pending": self.pending,
        }


class VoiceTurnStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class VoiceTurn:
    """One voice message's life: pending placeholder, then text or a failure."""

    id: str
    status: VoiceTurnStatus = VoiceTurnStatus.PENDING
    text: str = ""
    reason: str = ""

    def resolve(self, text: str) -> "VoiceTurn":
        return VoiceTurn(self.id, VoiceTurnStatus.RESOLVED, text=text)

    def fail(self, reason: str) -> "VoiceTurn":
        return VoiceTurn(self.id, VoiceTurnStatus.FAILED, reason=reason)
