# chatapp/store.py
"""
Conversation persistence over a pluggable remote store.

Every method reports failure through its return value (None / False / []),
never by raising: callers treat a failed load as "nothing to load".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from voiceapp.errors import StoreError

from .constants import NEW_CONVERSATION_TITLE, TITLE_MAX_CHARS, VOICE_MARKER
from .messages import USER, ChatMessage

logger = logging.getLogger(__name__)


def derive_title(messages: Sequence[ChatMessage]) -> str:
    first = next((m for m in messages if m.role == USER and not m.pending), None)
    if first is None:
        return NEW_CONVERSATION_TITLE
    content = first.content.replace(VOICE_MARKER, "").strip()
    if len(content) > TITLE_MAX_CHARS:
        return content[:TITLE_MAX_CHARS] + "…"
    return content


@dataclass(frozen=True)
class ConversationSummary:
    id: str
    title: str
    persona: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "persona": self.persona,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class StoreBackend(Protocol):
    async def insert_conversation(self, record: Dict[str, Any]) -> Dict[str, Any]: ...

    async def insert_messages(self, rows: List[Dict[str, Any]]) -> None: ...

    async def delete_messages(self, conversation_id: str) -> None: ...

    async def select_messages(self, conversation_id: str) -> List[Dict[str, Any]]: ...

    async def select_conversations(self, limit: int) -> List[Dict[str, Any]]: ...

    async def delete_conversation(self, conversation_id: str) -> None: ...

    async def update_conversation(self, conversation_id: str, fields: Dict[str, Any]) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def message_to_row(conversation_id: str, msg: ChatMessage, position: int = 0) -> Dict[str, Any]:
    return {
        "conversation_id": conversation_id,
        "position": position,
        "role": msg.role,
        "content": msg.content,
        "persona": msg.persona,
        "created_at": msg.created_at,
        "media_preview": msg.media_preview or None,
    }


def row_to_message(row: Dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=str(row["id"]),
        role=row["role"],
        content=row["content"],
        persona=row["persona"],
        created_at=_as_datetime(row["created_at"]),
        media_preview=row.get("media_preview"),
    )


def row_to_summary(row: Dict[str, Any]) -> ConversationSummary:
    return ConversationSummary(
        id=str(row["id"]),
        title=row["title"],
        persona=row["persona"],
        created_at=_as_datetime(row["created_at"]),
        updated_at=_as_datetime(row["updated_at"]),
    )


class ConversationStore:
    def __init__(self, backend: StoreBackend):
        self.backend = backend

    @staticmethod
    def _persistable(messages: Sequence[ChatMessage]) -> List[ChatMessage]:
        return [m for m in messages if not m.pending]

    async def save(self, messages: Sequence[ChatMessage], persona: str) -> Optional[str]:
        messages = self._persistable(messages)
        now = _utcnow()
        try:
            conversation = await self.backend.insert_conversation(
                {"title": derive_title(messages), "persona": persona, "created_at": now, "updated_at": now}
            )
        except StoreError as e:
            logger.error("Error creating conversation: %s", e)
            return None
        conversation_id = str(conversation["id"])

        try:
            await self.backend.insert_messages([message_to_row(conversation_id, m, i) for i, m in enumerate(messages)])
        except StoreError as e:
            # conversation row stays; caller sees an overall failure
            logger.error("Error saving messages for %s: %s", conversation_id, e)
            return None
        logger.info("Saved conversation %s (%d messages)", conversation_id, len(messages))
        return conversation_id

    async def update(self, conversation_id: str, messages: Sequence[ChatMessage]) -> bool:
        messages = self._persistable(messages)
        try:
            await self.backend.delete_messages(conversation_id)
        except StoreError as e:
            logger.error("Error deleting old messages for %s: %s", conversation_id, e)
            return False
        try:
            await self.backend.insert_messages([message_to_row(conversation_id, m, i) for i, m in enumerate(messages)])
        except StoreError as e:
            logger.error("Error inserting messages for %s: %s", conversation_id, e)
            return False
        try:
            await self.backend.update_conversation(
                conversation_id, {"title": derive_title(messages), "updated_at": _utcnow()}
            )
        except StoreError as e:
            logger.error("Error updating conversation %s: %s", conversation_id, e)
            return False
        return True

    async def load(self, conversation_id: str) -> Optional[List[ChatMessage]]:
        try:
            rows = await self.backend.select_messages(conversation_id)
        except StoreError as e:
            logger.error("Error loading conversation %s: %s", conversation_id, e)
            return None
        if not rows:
            return None
        return [row_to_message(r) for r in rows]

    async def list(self, limit: int = 50) -> List[ConversationSummary]:
        try:
            rows = await self.backend.select_conversations(limit)
        except StoreError as e:
            logger.error("Error fetching conversations: %s", e)
            return []
        return [row_to_summary(r) for r in rows]

    async def delete(self, conversation_id: str) -> bool:
        try:
            await self.backend.delete_conversation(conversation_id)
        except StoreError as e:
            logger.error("Error deleting conversation %s: %s", conversation_id, e)
            return False
        return True
