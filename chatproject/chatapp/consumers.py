# consumers.py
import asyncio
import base64
import binascii
import json
import logging
import uuid

from channels.generic.websocket import AsyncWebsocketConsumer

from voiceapp.errors import ValidationError

from .media import Attachment
from .services import build_orchestrator, websocket_voice_enabled

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncWebsocketConsumer):
    """
    One chat session per socket. Orchestrator events are queued in order and
    fanned out through the connection's channel-layer group.
    """

    async def connect(self):
        self.group_name = f"chat_{uuid.uuid4().hex}"
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        self._events: asyncio.Queue = asyncio.Queue()
        self._tasks = set()
        self._pump = asyncio.create_task(self._pump_events())
        try:
            self.chat = build_orchestrator(self._enqueue, voice=websocket_voice_enabled())
        except Exception:
            logger.exception("Chat session could not start")
            await self.close(code=1011)
            return
        await self._send_json({"type": "session", **self.chat.snapshot()})
        self.chat.welcome()

    async def disconnect(self, code):
        await self.channel_layer.group_discard(self.group_name, self.channel_name)
        chat = getattr(self, "chat", None)
        if chat is not None:
            await chat.shutdown()
        for task in list(getattr(self, "_tasks", ())):
            task.cancel()
        pump = getattr(self, "_pump", None)
        if pump is not None:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

    # ---------------- Orchestrator -> group ----------------
    def _enqueue(self, event: str, data: dict):
        self._events.put_nowait((event, data))

    async def _pump_events(self):
        while True:
            event, data = await self._events.get()
            await self.channel_layer.group_send(
                self.group_name, {"type": "chat.event", "event": event, "data": data}
            )

    async def chat_event(self, event):
        await self._send_json({"type": "event", "event": event.get("event"), "data": event.get("data") or {}})

    # ---------------- Client -> orchestrator ----------------
    async def receive(self, text_data=None, bytes_data=None):
        if not text_data or not getattr(self, "chat", None):
            return
        try:
            data = json.loads(text_data)
        except json.JSONDecodeError:
            await self._alert("invalid", "Malformed message")
            return
        if not isinstance(data, dict):
            return

        kind = data.get("type")
        if kind == "ping":
            await self._send_json({"type": "pong"})
        elif kind == "send":
            await self._handle_send(data)
        elif kind == "persona":
            try:
                self.chat.change_persona(str(data.get("persona", "")))
            except KeyError:
                await self._alert("persona", f"Unknown persona: {data.get('persona')}")
        elif kind == "language":
            try:
                self.chat.set_language(str(data.get("language", "")))
            except KeyError:
                await self._alert("language", f"Unknown language: {data.get('language')}")
        elif kind == "new_chat":
            self.chat.new_chat()
        elif kind == "record":
            await self._handle_record(data.get("action"))
        elif kind == "speak":
            self._spawn(self.chat.toggle_speech(str(data.get("message_id", ""))))
        elif kind == "stop_speaking":
            self.chat.stop_speaking()
        elif kind == "save":
            self._spawn(self.chat.save_conversation())
        elif kind == "load":
            self._spawn(self._load(str(data.get("conversation_id", ""))))
        elif kind == "list":
            self._spawn(self._list())
        elif kind == "delete":
            self._spawn(self._delete(str(data.get("conversation_id", ""))))
        else:
            await self._alert("invalid", f"Unknown command: {kind}")

    async def _handle_send(self, data: dict):
        attachment = None
        payload = data.get("attachment")
        if payload:
            try:
                raw = base64.b64decode(payload.get("data") or "", validate=True)
                attachment = Attachment.from_bytes(str(payload.get("name") or "upload"), raw, payload.get("mime"))
                self.chat.prepare_attachment(attachment)
            except (binascii.Error, AttributeError):
                await self._alert("invalid", "Attachment data is not valid base64")
                return
            except ValidationError as e:
                await self._alert(e.reason, str(e))
                return
        self._spawn(self.chat.send_message(str(data.get("text") or ""), attachment))

    async def _handle_record(self, action):
        if action == "start":
            self._spawn(self.chat.start_recording())
        elif action == "pause":
            self.chat.pause_recording()
        elif action == "resume":
            self.chat.resume_recording()
        elif action == "stop":
            self.chat.stop_recording()
        else:
            await self._alert("invalid", f"Unknown record action: {action}")

    async def _load(self, conversation_id: str):
        if not await self.chat.load_conversation(conversation_id):
            await self._alert("load", "Conversation could not be loaded")

    async def _list(self):
        conversations = await self.chat.list_conversations()
        await self._send_json({"type": "conversations", "conversations": [c.to_dict() for c in conversations]})

    async def _delete(self, conversation_id: str):
        ok = await self.chat.delete_conversation(conversation_id)
        await self._send_json({"type": "deleted", "conversation_id": conversation_id, "ok": ok})

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Chat command failed", exc_info=task.exception())

    async def _alert(self, reason: str, message: str):
        await self._send_json({"type": "alert", "reason": reason, "message": message})

    # Small helper to keep sends consistent/compact
    async def _send_json(self, payload: dict):
        await self.send(text_data=json.dumps(payload, separators=(",", ":"), default=str))
