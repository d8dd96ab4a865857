import base64

import pytest
from channels.testing import WebsocketCommunicator

from chatapp import consumers
from chatapp.consumers import ChatConsumer
from chatapp.orchestrator import ChatOrchestrator
from chatapp.store import ConversationStore
from conftest import FakeModel, InMemoryStoreBackend

# Channels closes stale DB connections on connect, which needs database access
pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def backend(monkeypatch):
    backend = InMemoryStoreBackend()

    def build(listener, voice=True):
        return ChatOrchestrator(FakeModel(reply="Hi from the assistant."), ConversationStore(backend), listener=listener)

    monkeypatch.setattr(consumers, "build_orchestrator", build)
    return backend


async def receive_until(communicator, predicate, limit=20):
    for _ in range(limit):
        payload = await communicator.receive_json_from(timeout=2)
        if predicate(payload):
            return payload
    raise AssertionError("expected payload never arrived")


def appended(role):
    return lambda p: p.get("event") == "message.appended" and p["data"]["message"]["role"] == role


@pytest.fixture
async def communicator(backend):
    communicator = WebsocketCommunicator(ChatConsumer.as_asgi(), "/ws/chat/")
    connected, _ = await communicator.connect()
    assert connected
    yield communicator
    await communicator.disconnect()


async def test_session_snapshot_then_welcome(communicator):
    session = await communicator.receive_json_from(timeout=2)
    assert session["type"] == "session"
    assert session["persona"] == "general"
    assert session["recording"] == "unavailable"

    welcome = await receive_until(communicator, appended("assistant"))
    assert "Welcome" in welcome["data"]["message"]["content"]


async def test_ping_pong(communicator):
    await communicator.send_json_to({"type": "ping"})
    await receive_until(communicator, lambda p: p.get("type") == "pong")


async def test_send_round_trip(communicator):
    await receive_until(communicator, appended("assistant"))
    await communicator.send_json_to({"type": "send", "text": "Hello?"})

    user = await receive_until(communicator, appended("user"))
    assert user["data"]["message"]["content"] == "Hello?"
    reply = await receive_until(communicator, appended("assistant"))
    assert reply["data"]["message"]["content"] == "Hi from the assistant."


async def test_rejected_attachment_raises_alert(communicator):
    await communicator.send_json_to({
        "type": "send",
        "text": "",
        "attachment": {"name": "a.zip", "mime": "application/zip", "data": base64.b64encode(b"PK").decode()},
    })
    alert = await receive_until(communicator, lambda p: p.get("type") == "alert")
    assert alert["reason"] == "type"


async def test_unknown_persona_and_command_alert(communicator):
    await communicator.send_json_to({"type": "persona", "persona": "pirate"})
    alert = await receive_until(communicator, lambda p: p.get("type") == "alert")
    assert alert["reason"] == "persona"

    await communicator.send_json_to({"type": "dance"})
    alert = await receive_until(communicator, lambda p: p.get("type") == "alert")
    assert alert["reason"] == "invalid"


async def test_language_switch_event_and_alert(communicator):
    await communicator.send_json_to({"type": "language", "language": "sw"})
    event = await receive_until(communicator, lambda p: p.get("event") == "language")
    assert event["data"] == {"language": "sw"}

    await communicator.send_json_to({"type": "language", "language": "klingon"})
    alert = await receive_until(communicator, lambda p: p.get("type") == "alert")
    assert alert["reason"] == "language"


async def test_persona_switch_event(communicator):
    await communicator.send_json_to({"type": "persona", "persona": "code"})
    event = await receive_until(communicator, lambda p: p.get("event") == "persona")
    assert event["data"] == {"persona": "code"}


async def test_save_then_list(communicator, backend):
    await communicator.send_json_to({"type": "send", "text": "Remember this"})
    await receive_until(communicator, lambda p: appended("assistant")(p) and "Hi from" in p["data"]["message"]["content"])

    await communicator.send_json_to({"type": "save"})
    saved = await receive_until(communicator, lambda p: p.get("event") == "save" and p["data"]["status"] == "saved")
    assert saved["data"]["conversation_id"] in backend.conversations

    await communicator.send_json_to({"type": "list"})
    listing = await receive_until(communicator, lambda p: p.get("type") == "conversations")
    assert listing["conversations"][0]["title"] == "Remember this"
