# chatapp/db_helpers.py

from __future__ import annotations

from typing import Any, Dict, List

from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction

from voiceapp.errors import StoreError

from .models import Conversation, Message

_CONVERSATION_FIELDS = ("id", "title", "persona", "created_at", "updated_at")
_MESSAGE_FIELDS = ("id", "conversation_id", "role", "content", "persona", "created_at", "media_preview")
_STORE_FAILURES = (DatabaseError, DjangoValidationError, ValueError)

# ----------------------------
# Low-level SYNC implementations
# ----------------------------


def _insert_conversation_sync(record: Dict[str, Any]) -> Dict[str, Any]:
    conv = Conversation.objects.create(**record)
    return {f: getattr(conv, f) for f in _CONVERSATION_FIELDS}


def _insert_messages_sync(rows: List[Dict[str, Any]]) -> None:
    """Batch insert; all rows or none."""
    if not rows:
        return
    with transaction.atomic():
        Message.objects.bulk_create([Message(**row) for row in rows])


def _delete_messages_sync(conversation_id: str) -> None:
    Message.objects.filter(conversation_id=conversation_id).delete()


def _select_messages_sync(conversation_id: str) -> List[Dict[str, Any]]:
    """Messages oldest -> newest."""
    qs = Message.objects.filter(conversation_id=conversation_id).order_by("created_at", "position")
    return list(qs.values(*_MESSAGE_FIELDS))


def _select_conversations_sync(limit: int = 50) -> List[Dict[str, Any]]:
    rows = Conversation.objects.order_by("-updated_at")[:limit]
    return list(rows.values(*_CONVERSATION_FIELDS))


def _delete_conversation_sync(conversation_id: str) -> None:
    # messages go with it (on_delete=CASCADE)
    Conversation.objects.filter(id=conversation_id).delete()


def _update_conversation_sync(conversation_id: str, fields: Dict[str, Any]) -> None:
    updated = Conversation.objects.filter(id=conversation_id).update(**fields)
    if not updated:
        raise StoreError(f"Conversation {conversation_id} not found")


def _db_health_check_sync() -> bool:
    """
    Quick DB connectivity check (minimal query).
    """
    _ = Conversation.objects.order_by("id").first()
    return True


def _wrap(fn):
    """sync_to_async plus StoreError translation for database failures."""
    async_fn = sync_to_async(fn)

    async def call(*args, **kwargs):
        try:
            return await async_fn(*args, **kwargs)
        except StoreError:
            raise
        except _STORE_FAILURES as e:
            raise StoreError(str(e)) from e

    call.__name__ = fn.__name__.replace("_sync", "").lstrip("_")
    return call


insert_conversation = _wrap(_insert_conversation_sync)
insert_messages = _wrap(_insert_messages_sync)
delete_messages = _wrap(_delete_messages_sync)
select_messages = _wrap(_select_messages_sync)
select_conversations = _wrap(_select_conversations_sync)
delete_conversation = _wrap(_delete_conversation_sync)
update_conversation = _wrap(_update_conversation_sync)
db_health_check = _wrap(_db_health_check_sync)


class DjangoStoreBackend:
    """ConversationStore backend on the project's own database."""

    async def insert_conversation(self, record):
        return await insert_conversation(record)

    async def insert_messages(self, rows):
        await insert_messages(rows)

    async def delete_messages(self, conversation_id):
        await delete_messages(conversation_id)

    async def select_messages(self, conversation_id):
        return await select_messages(conversation_id)

    async def select_conversations(self, limit):
        return await select_conversations(limit)

    async def delete_conversation(self, conversation_id):
        await delete_conversation(conversation_id)

    async def update_conversation(self, conversation_id, fields):
        await update_conversation(conversation_id, fields)

    async def health_check(self) -> bool:
        return await db_health_check()


__all__ = [
    "insert_conversation",
    "insert_messages",
    "delete_messages",
    "select_messages",
    "select_conversations",
    "delete_conversation",
    "update_conversation",
    "db_health_check",
    "DjangoStoreBackend",
]
