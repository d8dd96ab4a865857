# chatapp/orchestrator.py
"""
Chat session logic: owns the message list and composes the recorder,
transcriber, speaker, model and store.

Surfaces (websocket consumer, CLI) subscribe to events and call the async
operations; nothing else mutates the message list.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from voiceapp.errors import (
    ChatError,
    DeviceError,
    InvalidStateError,
    RecognitionError,
    TranscriptionTimeoutError,
    UnsupportedError,
)
from voiceapp.playback import SpeechPlaybackController
from voiceapp.recorder import MAX_DURATION_MS, AudioClip, CaptureBackend, RecordingSession
from voiceapp.transcription import TranscriptionClient

from .constants import (
    APOLOGY_TEXTS,
    DEFAULT_LANGUAGE,
    DEFAULT_PERSONA,
    MIC_BUSY_TEXT,
    MIC_UNAVAILABLE_TEXT,
    TRANSCRIBING_TEXT,
    VOICE_ERROR_TEXT,
    VOICE_MARKER,
    Persona,
    apology_text,
    get_language,
    get_persona,
    media_prompt,
    new_chat_text,
    switch_text,
    welcome_text,
)
from .gemini import HISTORY_TURNS, GeminiModelClient, build_prompt_context
from .media import MAX_UPLOAD_BYTES, Attachment, make_thumbnail, validate_attachment
from .messages import ASSISTANT, USER, ChatMessage, VoiceTurn, VoiceTurnStatus
from .store import ConversationStore, ConversationSummary

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], None]


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


def clean_for_speech(text: str) -> str:
    """Removes markdown characters that shouldn't be spoken."""
    return " ".join(text.replace("*", "").replace("#", "").split())


class ChatOrchestrator:
    def __init__(
        self,
        model: GeminiModelClient,
        store: ConversationStore,
        *,
        transcriber: Optional[TranscriptionClient] = None,
        speaker: Optional[SpeechPlaybackController] = None,
        capture_backend: Optional[CaptureBackend] = None,
        persona: str = DEFAULT_PERSONA,
        language: str = DEFAULT_LANGUAGE,
        history_turns: int = HISTORY_TURNS,
        max_recording_ms: int = MAX_DURATION_MS,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        speak_voice_replies: bool = True,
        autosave: bool = False,
        listener: Optional[Listener] = None,
    ):
        self.model = model
        self.store = store
        self.transcriber = transcriber
        self.speaker = speaker
        self.history_turns = history_turns
        self.max_upload_bytes = max_upload_bytes
        self.speak_voice_replies = speak_voice_replies
        self.autosave = autosave

        self.recorder: Optional[RecordingSession] = None
        if capture_backend is not None:
            self.recorder = RecordingSession(
                capture_backend,
                on_data_available=self._on_clip,
                on_error=self._on_recording_error,
                on_tick=self._on_recording_tick,
                max_duration_ms=max_recording_ms,
            )

        self._persona: Persona = get_persona(persona)
        self._language = get_language(language)
        self._messages: List[ChatMessage] = []
        self._voice_turns: Dict[str, VoiceTurn] = {}
        self._in_flight: Set[str] = set()
        self._epoch = 0
        self._tasks: Set[asyncio.Task] = set()
        self._speaking_message_id: Optional[str] = None
        self._listeners: List[Listener] = [listener] if listener else []
        self._save_lock = asyncio.Lock()

        self.conversation_id: Optional[str] = None
        self.save_status = SaveStatus.IDLE

    # ---------------- State ----------------
    @property
    def messages(self) -> tuple:
        return tuple(self._messages)

    @property
    def persona(self) -> Persona:
        return self._persona

    @property
    def language(self) -> str:
        return self._language

    @property
    def is_typing(self) -> bool:
        return bool(self._in_flight)

    @property
    def is_speaking(self) -> bool:
        return self.speaker is not None and self.speaker.is_speaking()

    @property
    def speaking_message_id(self) -> Optional[str]:
        return self._speaking_message_id if self.is_speaking else None

    def pending_voice_turns(self) -> List[VoiceTurn]:
        return list(self._voice_turns.values())

    def snapshot(self) -> dict:
        return {
            "persona": self._persona.id,
            "language": self._language,
            "conversation_id": self.conversation_id,
            "typing": self.is_typing,
            "save_status": self.save_status.value,
            "recording": self.recorder.state.value if self.recorder else "unavailable",
            "messages": [m.to_dict() for m in self._messages],
        }

    # ---------------- Events ----------------
    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str, **data) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception("Listener failed for %s", event)

    def _append(self, message: ChatMessage) -> None:
        self._messages.append(message)
        self._emit("message.appended", message=message.to_dict())

    def _remove(self, message_id: str) -> None:
        self._messages = [m for m in self._messages if m.id != message_id]
        self._emit("message.removed", id=message_id)

    def _assistant(self, text: str) -> ChatMessage:
        message = ChatMessage(ASSISTANT, text, self._persona.id)
        self._append(message)
        return message

    def _settled_history(self) -> List[ChatMessage]:
        return [m for m in self._messages if not m.pending]

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---------------- Session ----------------
    def welcome(self) -> ChatMessage:
        return self._assistant(welcome_text(self._persona))

    def change_persona(self, persona_id: str) -> bool:
        persona = get_persona(persona_id)
        if persona.id == self._persona.id:
            return False
        self._persona = persona
        self._emit("persona", persona=persona.id)
        self._assistant(switch_text(persona))
        return True

    def set_language(self, language: str) -> bool:
        """Switch the language replies are written in. Raises KeyError for unknown codes."""
        code = get_language(language)
        if code == self._language:
            return False
        self._language = code
        self._emit("language", language=code)
        return True

    def new_chat(self) -> None:
        self.stop_speaking()
        self._epoch += 1
        self._in_flight.clear()
        self._voice_turns.clear()
        self._messages = []
        self.conversation_id = None
        self.save_status = SaveStatus.IDLE
        self._emit("chat.reset", conversation_id=None)
        self._emit("typing", typing=False)
        self._assistant(new_chat_text(self._persona))

    async def shutdown(self) -> None:
        if self.recorder is not None:
            self.recorder.cleanup()
        if self.speaker is not None:
            self.speaker.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ---------------- Text and attachments ----------------
    def prepare_attachment(self, attachment: Attachment) -> Attachment:
        """Raises ValidationError before any thumbnail or network work."""
        return validate_attachment(attachment, self.max_upload_bytes)

    async def send_message(self, text: str = "", attachment: Optional[Attachment] = None) -> Optional[ChatMessage]:
        content = (text or "").strip()
        if not content and attachment is None:
            return None
        if attachment is not None:
            self.prepare_attachment(attachment)

        preview = None
        if attachment is not None and attachment.is_image:
            preview = await asyncio.to_thread(make_thumbnail, attachment)

        epoch = self._epoch
        history = self._settled_history()
        user_message = ChatMessage(
            USER,
            content or f"Shared {attachment.kind}: {attachment.name}",
            self._persona.id,
            attachment=attachment,
            media_preview=preview,
        )
        self._append(user_message)

        if attachment is not None and attachment.is_inline_media:
            prompt = media_prompt(attachment.kind, content, self._language)
        else:
            prompt = user_message.content
        return await self._request_reply(epoch, history, prompt, attachment)

    async def _request_reply(
        self,
        epoch: int,
        history: List[ChatMessage],
        prompt: str,
        attachment: Optional[Attachment] = None,
    ) -> Optional[ChatMessage]:
        persona = self._persona
        language = self._language
        request_id = uuid.uuid4().hex
        self._in_flight.add(request_id)
        self._emit("typing", typing=True)
        try:
            context = build_prompt_context(persona, history, prompt, self.history_turns, language)
            if attachment is not None and attachment.is_inline_media:
                text = await self.model.generate_from_context_and_media(context, attachment)
            else:
                text = await self.model.generate(context)
        except ChatError as e:
            logger.error("Error generating AI response: %s", e)
            text = apology_text(language)
        except Exception:
            logger.exception("Unexpected model failure")
            text = apology_text(language)
        finally:
            self._in_flight.discard(request_id)
            self._emit("typing", typing=self.is_typing)

        if epoch != self._epoch:
            logger.info("Dropping a reply that belongs to a conversation no longer on screen")
            return None
        reply = ChatMessage(ASSISTANT, text, persona.id)
        self._append(reply)
        if self.autosave:
            await self.save_conversation()
        return reply

    # ---------------- Voice ----------------
    async def start_recording(self) -> bool:
        if self.recorder is None:
            self._assistant(VOICE_ERROR_TEXT["unsupported"])
            return False
        if self._voice_turns:
            logger.info("Ignoring start: a voice message is still being transcribed")
            return False
        try:
            await self.recorder.start()
        except InvalidStateError:
            if self.recorder.is_recording:
                logger.info("Ignoring start: already recording")
                return False
            logger.warning("Microphone is held by another session")
            self._assistant(MIC_BUSY_TEXT)
            self._emit("recording", state="idle")
            return False
        except DeviceError as e:
            logger.error("Recording error: %s", e)
            self._assistant(MIC_UNAVAILABLE_TEXT)
            self._emit("recording", state="idle")
            return False
        self._emit("recording", state=self.recorder.state.value)
        return True

    def pause_recording(self) -> bool:
        if self.recorder is None or not self.recorder.pause():
            return False
        self._emit("recording", state=self.recorder.state.value)
        return True

    def resume_recording(self) -> bool:
        if self.recorder is None or not self.recorder.resume():
            return False
        self._emit("recording", state=self.recorder.state.value)
        return True

    def stop_recording(self) -> bool:
        if self.recorder is None:
            return False
        return self.recorder.stop() is not None

    def _on_clip(self, clip: AudioClip) -> None:
        self._emit("recording", state="idle", duration_ms=clip.duration_ms)
        self._spawn(self.handle_voice_message(clip))

    def _on_recording_error(self, exc: Exception) -> None:
        logger.error("Recording error: %s", exc)
        self._emit("recording", state="idle")
        self._assistant(VOICE_ERROR_TEXT["device"])

    def _on_recording_tick(self, duration_ms: int, level: float) -> None:
        self._emit("recording.tick", duration_ms=duration_ms, level=round(level, 3))

    async def handle_voice_message(self, clip: Optional[AudioClip] = None) -> Optional[ChatMessage]:
        """
        Placeholder, live transcription, then a normal turn with the transcript.
        The recorded clip only marks the end of the user's recording; the
        recognizer listens to the microphone directly.
        """
        if clip is not None:
            logger.debug("Voice clip received (%sms, %s bytes)", clip.duration_ms, clip.size)
        epoch = self._epoch
        turn = VoiceTurn(id=uuid.uuid4().hex)
        self._voice_turns[turn.id] = turn
        self._append(ChatMessage(USER, TRANSCRIBING_TEXT, self._persona.id, id=turn.id, pending=True))

        try:
            if self.transcriber is None:
                raise UnsupportedError("Speech recognition not configured")
            transcript = await self.transcriber.transcribe()
        except RecognitionError as e:
            turn = turn.fail(e.kind.value)
        except TranscriptionTimeoutError:
            turn = turn.fail("timeout")
        except UnsupportedError:
            turn = turn.fail("unsupported")
        except Exception:
            logger.exception("Voice processing error")
            turn = turn.fail("other")
        else:
            turn = turn.resolve(transcript)
        return await self._settle_voice_turn(turn, epoch)

    async def _settle_voice_turn(self, turn: VoiceTurn, epoch: int) -> Optional[ChatMessage]:
        self._voice_turns.pop(turn.id, None)
        if epoch != self._epoch:
            logger.info("Dropping voice turn %s from a previous conversation", turn.id)
            return None
        self._remove(turn.id)

        if turn.status is VoiceTurnStatus.FAILED:
            logger.warning("Voice message failed: %s", turn.reason)
            self._assistant(VOICE_ERROR_TEXT.get(turn.reason, VOICE_ERROR_TEXT["other"]))
            return None

        history = self._settled_history()
        self._append(ChatMessage(USER, f"{VOICE_MARKER} {turn.text}", self._persona.id))
        reply = await self._request_reply(epoch, history, turn.text)
        if reply is not None and self.speak_voice_replies and reply.content not in APOLOGY_TEXTS.values():
            await self.speak_message(reply.id)
        return reply

    # ---------------- Speech playback ----------------
    async def toggle_speech(self, message_id: str) -> bool:
        """Speak a message, or stop if that message is already being spoken."""
        if self.speaking_message_id == message_id:
            self.stop_speaking()
            return False
        return await self.speak_message(message_id)

    async def speak_message(self, message_id: str) -> bool:
        if self.speaker is None or not self.speaker.supported:
            return False
        message = next((m for m in self._messages if m.id == message_id), None)
        if message is None:
            return False

        def _done():
            if self._speaking_message_id == message_id:
                self._speaking_message_id = None
                self._emit("speaking", message_id=message_id, speaking=False)

        self._speaking_message_id = message_id
        self._emit("speaking", message_id=message_id, speaking=True)
        try:
            await self.speaker.speak(clean_for_speech(message.content), on_done=_done)
        except ChatError as e:
            logger.warning("Speech playback failed: %s", e)
            _done()
            return False
        return True

    def stop_speaking(self) -> None:
        if self.speaker is None:
            return
        self.speaker.stop()
        if self._speaking_message_id is not None:
            message_id, self._speaking_message_id = self._speaking_message_id, None
            self._emit("speaking", message_id=message_id, speaking=False)

    # ---------------- Persistence ----------------
    def _set_save_status(self, status: SaveStatus) -> None:
        self.save_status = status
        self._emit("save", status=status.value, conversation_id=self.conversation_id)

    async def save_conversation(self) -> bool:
        """
        Saves are serialized: a save issued while another is in flight waits
        for it, then updates the record the first one created.
        """
        epoch = self._epoch
        messages = self._settled_history()
        persona = self._persona.id
        self._set_save_status(SaveStatus.SAVING)
        async with self._save_lock:
            if epoch != self._epoch:
                logger.info("Skipping a save queued for a conversation no longer on screen")
                return False
            if self.conversation_id is None:
                conversation_id = await self.store.save(messages, persona)
                ok = conversation_id is not None
                if ok and epoch == self._epoch:
                    self.conversation_id = conversation_id
            else:
                ok = await self.store.update(self.conversation_id, messages)
        if epoch != self._epoch:
            return ok
        self._set_save_status(SaveStatus.SAVED if ok else SaveStatus.ERROR)
        return ok

    async def load_conversation(self, conversation_id: str) -> bool:
        messages = await self.store.load(conversation_id)
        if not messages:
            return False
        self.stop_speaking()
        self._epoch += 1
        self._in_flight.clear()
        self._voice_turns.clear()
        self._messages = list(messages)
        self.conversation_id = conversation_id
        self.save_status = SaveStatus.SAVED
        try:
            self._persona = get_persona(messages[-1].persona)
        except KeyError:
            logger.warning("Loaded conversation uses unknown persona %s", messages[-1].persona)
        self._emit("chat.reset", conversation_id=conversation_id)
        self._emit("typing", typing=False)
        for message in self._messages:
            self._emit("message.appended", message=message.to_dict())
        return True

    async def list_conversations(self, limit: int = 50) -> List[ConversationSummary]:
        return await self.store.list(limit)

    async def delete_conversation(self, conversation_id: str) -> bool:
        ok = await self.store.delete(conversation_id)
        if ok and conversation_id == self.conversation_id:
            self.conversation_id = None
            self.save_status = SaveStatus.IDLE
        return ok
