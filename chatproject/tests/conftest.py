import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from chatapp.messages import ChatMessage
from chatapp.orchestrator import ChatOrchestrator
from chatapp.store import ConversationStore
from voiceapp.errors import StoreError
from voiceapp.language import Voice
from voiceapp.playback import SpeechPlaybackController
from voiceapp.transcription import TranscriptionClient


async def settle(predicate, timeout=1.0):
    """Yield to the loop until ``predicate()`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ---------------- Capture ----------------
class FakeStream:
    def __init__(self, sample_rate=16000, channels=1):
        self.sample_rate = sample_rate
        self.channels = channels
        self.sample_width = 2
        self.paused = False
        self.closed = False

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def close(self):
        self.closed = True


class FakeCaptureBackend:
    def __init__(self, fail=None, gate=None):
        self.fail = fail
        self.gate = gate
        self.streams = []
        self.on_frames = None
        self.on_error = None

    def open(self, constraints, on_frames, on_error):
        if self.gate is not None:
            self.gate.wait(2)
        if self.fail is not None:
            raise self.fail
        self.constraints = constraints
        self.on_frames = on_frames
        self.on_error = on_error
        stream = FakeStream()
        self.streams.append(stream)
        return stream


# ---------------- Recognition ----------------
class FakeRecognizer:
    def __init__(self, result="hello there", error=None, supported=True, hang=False):
        self.result = result
        self.error = error
        self.supported = supported
        self.hang = hang
        self.started = 0
        self.stopped = 0
        self.on_result = None
        self.on_error = None

    def is_supported(self):
        return self.supported

    def start(self, config, on_result, on_error):
        self.started += 1
        self.config = config
        self.on_result = on_result
        self.on_error = on_error
        if self.hang:
            return
        if self.error:
            on_error(self.error)
        else:
            on_result(self.result)

    def stop(self):
        self.stopped += 1


# ---------------- Speech ----------------
class FakeEngine:
    def __init__(self, voices=None):
        self.voices = voices if voices is not None else [Voice("Samantha", "en-US", default=True, voice_uri="sam")]
        self.spoken = []
        self.speaking = False
        self.paused = False
        self.cancelled = 0
        self.resumed = 0

    def get_voices(self):
        return self.voices

    def speak(self, utterance):
        self.spoken.append(utterance)
        self.speaking = True

    def finish(self, index=-1):
        self.speaking = False
        self.spoken[index].finish()

    def cancel(self):
        self.cancelled += 1
        self.speaking = False

    def pause(self):
        self.paused = True

    def resume(self):
        self.resumed += 1
        self.paused = False


class FakeHandle:
    def __init__(self):
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakePlayer:
    def __init__(self):
        self.played = []

    def play(self, audio, on_end, on_error):
        handle = FakeHandle()
        self.played.append((audio, on_end, on_error, handle))
        return handle


class FakeSynth:
    def __init__(self, error=None, gate=None):
        self.error = error
        self.gate = gate
        self.requests = []

    async def synthesize(self, text, voice):
        self.requests.append((text, voice))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return text.encode()


# ---------------- Model ----------------
class FakeModel:
    def __init__(self, reply="Sure, here you go.", error=None, gate=None):
        self.reply = reply
        self.error = error
        self.gate = gate
        self.contexts = []
        self.media = []

    async def generate(self, prompt_context):
        self.contexts.append(prompt_context)
        return await self._answer()

    async def generate_from_context_and_media(self, prompt_context, media):
        self.contexts.append(prompt_context)
        self.media.append(media)
        return await self._answer()

    async def _answer(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


# ---------------- Store ----------------
class InMemoryStoreBackend:
    """Mirrors the remote tables; ``fail`` names operations that raise StoreError."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.conversations = {}
        self.messages = []

    def _check(self, op):
        if op in self.fail:
            raise StoreError(f"{op} failed")

    async def insert_conversation(self, record):
        self._check("insert_conversation")
        row = dict(record, id=uuid.uuid4().hex)
        self.conversations[row["id"]] = row
        return dict(row)

    async def insert_messages(self, rows):
        self._check("insert_messages")
        for row in rows:
            self.messages.append(dict(row, id=uuid.uuid4().hex))

    async def delete_messages(self, conversation_id):
        self._check("delete_messages")
        self.messages = [m for m in self.messages if m["conversation_id"] != conversation_id]

    async def select_messages(self, conversation_id):
        self._check("select_messages")
        rows = [m for m in self.messages if m["conversation_id"] == conversation_id]
        return sorted(rows, key=lambda m: (m["created_at"], m["position"]))

    async def select_conversations(self, limit):
        self._check("select_conversations")
        rows = sorted(self.conversations.values(), key=lambda c: c["updated_at"], reverse=True)
        return rows[:limit]

    async def delete_conversation(self, conversation_id):
        self._check("delete_conversation")
        self.conversations.pop(conversation_id, None)
        await self.delete_messages(conversation_id)

    async def update_conversation(self, conversation_id, fields):
        self._check("update_conversation")
        if conversation_id not in self.conversations:
            raise StoreError("not found")
        self.conversations[conversation_id].update(fields)


def make_message(role, content, persona="general", **kwargs):
    kwargs.setdefault("created_at", datetime.now(timezone.utc))
    return ChatMessage(role, content, persona, **kwargs)


# ---------------- Fixtures ----------------
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def capture():
    return FakeCaptureBackend()


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def store_backend():
    return InMemoryStoreBackend()


@pytest.fixture
def events():
    return []


@pytest.fixture
def chat(model, store_backend, recognizer, engine, capture, events):
    return ChatOrchestrator(
        model,
        ConversationStore(store_backend),
        transcriber=TranscriptionClient(recognizer, timeout=0.5, language="en-US"),
        speaker=SpeechPlaybackController(engine=engine, watchdog_interval=0.01),
        capture_backend=capture,
        listener=lambda event, data: events.append((event, data)),
    )
