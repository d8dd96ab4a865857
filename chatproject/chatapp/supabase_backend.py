# chatapp/supabase_backend.py
"""
ConversationStore backend on a hosted Supabase project.

Tables: ``conversations(id, title, mode, created_at, updated_at)`` and
``messages(id, conversation_id, type, content, mode, created_at, media_preview)``
where ``type`` is ``user``/``ai`` and ``mode`` is the persona id.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List

from postgrest.exceptions import APIError
from supabase import Client, create_client

from voiceapp.errors import StoreError

logger = logging.getLogger(__name__)

_ROLE_TO_TYPE = {"user": "user", "assistant": "ai"}
_TYPE_TO_ROLE = {"user": "user", "ai": "assistant"}


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


def _to_message_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "conversation_id": row["conversation_id"],
        "type": _ROLE_TO_TYPE.get(row["role"], "ai"),
        "content": row["content"],
        "mode": row["persona"],
        "created_at": _iso(row["created_at"]),
        "media_preview": row.get("media_preview"),
    }


def _from_message_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "conversation_id": row["conversation_id"],
        "role": _TYPE_TO_ROLE.get(row.get("type"), "assistant"),
        "content": row["content"],
        "persona": row.get("mode") or "general",
        "created_at": row["created_at"],
        "media_preview": row.get("media_preview"),
    }


def _from_conversation_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "title": row["title"],
        "persona": row.get("mode") or "general",
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class SupabaseStoreBackend:
    def __init__(self, client: Client = None, *, url: str = None, key: str = None):
        if client is None:
            if not url or not key:
                raise RuntimeError("Missing SUPABASE_URL or SUPABASE_KEY")
            client = create_client(url, key)
        self.client = client

    async def _run(self, fn):
        try:
            return await asyncio.to_thread(fn)
        except APIError as e:
            raise StoreError(getattr(e, "message", None) or str(e)) from e
        except Exception as e:
            logger.error("Supabase request failed: %s", e)
            raise StoreError(str(e)) from e

    async def insert_conversation(self, record):
        payload = {
            "title": record["title"],
            "mode": record["persona"],
            "created_at": _iso(record["created_at"]),
            "updated_at": _iso(record["updated_at"]),
        }
        res = await self._run(lambda: self.client.table("conversations").insert(payload).execute())
        if not res.data:
            raise StoreError("Conversation insert returned no row")
        return _from_conversation_row(res.data[0])

    async def insert_messages(self, rows: List[Dict[str, Any]]):
        if not rows:
            return
        payload = [_to_message_row(r) for r in rows]
        await self._run(lambda: self.client.table("messages").insert(payload).execute())

    async def delete_messages(self, conversation_id):
        await self._run(
            lambda: self.client.table("messages").delete().eq("conversation_id", conversation_id).execute()
        )

    async def select_messages(self, conversation_id):
        res = await self._run(
            lambda: self.client.table("messages")
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("created_at")
            .execute()
        )
        return [_from_message_row(r) for r in res.data or []]

    async def select_conversations(self, limit):
        res = await self._run(
            lambda: self.client.table("conversations")
            .select("*")
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [_from_conversation_row(r) for r in res.data or []]

    async def delete_conversation(self, conversation_id):
        # No cascade assumed on the hosted schema.
        await self.delete_messages(conversation_id)
        await self._run(lambda: self.client.table("conversations").delete().eq("id", conversation_id).execute())

    async def update_conversation(self, conversation_id, fields):
        payload = {k: _iso(v) for k, v in fields.items()}
        await self._run(
            lambda: self.client.table("conversations").update(payload).eq("id", conversation_id).execute()
        )
