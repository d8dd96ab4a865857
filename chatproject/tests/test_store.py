from chatapp.constants import NEW_CONVERSATION_TITLE
from chatapp.store import ConversationStore, derive_title
from conftest import InMemoryStoreBackend, make_message


def conversation():
    return [
        make_message("assistant", "Welcome!"),
        make_message("user", "🎤 What should I cook tonight?"),
        make_message("assistant", "How about a curry?"),
    ]


def test_title_comes_from_first_user_message():
    assert derive_title(conversation()) == "What should I cook tonight?"
    assert derive_title([make_message("assistant", "Welcome!")]) == NEW_CONVERSATION_TITLE


def test_long_title_is_truncated():
    title = derive_title([make_message("user", "x" * 80)])
    assert title == "x" * 50 + "…"


async def test_save_then_load_round_trip():
    backend = InMemoryStoreBackend()
    store = ConversationStore(backend)
    messages = conversation() + [make_message("user", "🎤 Transcribing…", pending=True)]

    conversation_id = await store.save(messages, "general")
    assert conversation_id is not None
    assert backend.conversations[conversation_id]["title"] == "What should I cook tonight?"

    loaded = await store.load(conversation_id)
    assert [(m.role, m.content) for m in loaded] == [(m.role, m.content) for m in conversation()]


async def test_update_replaces_messages_and_touches_conversation():
    backend = InMemoryStoreBackend()
    store = ConversationStore(backend)
    conversation_id = await store.save(conversation(), "general")
    before = backend.conversations[conversation_id]["updated_at"]

    extended = conversation() + [make_message("user", "Something vegetarian")]
    assert await store.update(conversation_id, extended)
    assert len(await store.load(conversation_id)) == 4
    assert backend.conversations[conversation_id]["updated_at"] >= before


async def test_list_is_newest_first():
    store = ConversationStore(InMemoryStoreBackend())
    first = await store.save(conversation(), "general")
    second = await store.save([make_message("user", "Second chat")], "code")
    summaries = await store.list()
    assert [s.id for s in summaries] == [second, first]
    assert summaries[0].persona == "code"


async def test_delete_removes_conversation():
    store = ConversationStore(InMemoryStoreBackend())
    conversation_id = await store.save(conversation(), "general")
    assert await store.delete(conversation_id)
    assert await store.load(conversation_id) is None
    assert await store.list() == []


async def test_failures_are_reported_as_values():
    store = ConversationStore(InMemoryStoreBackend(fail={
        "insert_conversation", "delete_messages", "select_messages", "select_conversations", "delete_conversation",
    }))
    assert await store.save(conversation(), "general") is None
    assert await store.update("abc", conversation()) is False
    assert await store.load("abc") is None
    assert await store.list() == []
    assert await store.delete("abc") is False


async def test_message_insert_failure_fails_save():
    store = ConversationStore(InMemoryStoreBackend(fail={"insert_messages"}))
    assert await store.save(conversation(), "general") is None


async def test_update_of_missing_conversation_fails():
    store = ConversationStore(InMemoryStoreBackend())
    assert await store.update("missing", conversation()) is False


def test_title_from_voice_message():
    text = "🎤 hello there, this is a test of a pretty long sentence that exceeds fifty characters"
    title = derive_title([make_message("user", text)])
    assert title == text.replace("🎤", "").strip()[:50] + "…"


async def test_round_trip_keeps_text_and_persona():
    store = ConversationStore(InMemoryStoreBackend())
    messages = [make_message("user", f"message {i}", persona=p) for i, p in enumerate(["code", "writing", "general"])]
    loaded = await store.load(await store.save(messages, "general"))
    assert [(m.content, m.persona) for m in loaded] == [(m.content, m.persona) for m in messages]


async def test_failed_delete_keeps_previous_messages():
    backend = InMemoryStoreBackend()
    store = ConversationStore(backend)
    conversation_id = await store.save(conversation(), "general")
    title = backend.conversations[conversation_id]["title"]

    backend.fail.add("delete_messages")
    replacement = [make_message("user", "Something else entirely")]
    assert await store.update(conversation_id, replacement) is False

    backend.fail.clear()
    loaded = await store.load(conversation_id)
    assert [m.content for m in loaded] == [m.content for m in conversation()]
    assert backend.conversations[conversation_id]["title"] == title
