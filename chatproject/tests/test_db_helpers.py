import pytest

from chatapp.db_helpers import DjangoStoreBackend
from chatapp.models import Conversation, Message
from chatapp.store import ConversationStore
from conftest import make_message

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def store():
    return ConversationStore(DjangoStoreBackend())


def conversation():
    return [
        make_message("assistant", "Welcome!"),
        make_message("user", "Explain decorators"),
        make_message("assistant", "A decorator wraps a function."),
    ]


async def test_save_and_load_keep_order(store):
    conversation_id = await store.save(conversation(), "code")
    loaded = await store.load(conversation_id)
    assert [m.content for m in loaded] == [m.content for m in conversation()]
    assert loaded[1].persona == "general"

    convo = await Conversation.objects.aget(id=conversation_id)
    assert convo.title == "Explain decorators"
    assert convo.persona == "code"


async def test_update_replaces_rows(store):
    conversation_id = await store.save(conversation(), "code")
    assert await store.update(conversation_id, conversation()[:2])
    assert await Message.objects.filter(conversation_id=conversation_id).acount() == 2


async def test_list_and_delete(store):
    first = await store.save(conversation(), "general")
    second = await store.save([make_message("user", "Second")], "writing")
    assert [s.id for s in await store.list()] == [second, first]

    assert await store.delete(first)
    assert await Message.objects.filter(conversation_id=first).acount() == 0
    assert [s.id for s in await store.list()] == [second]


async def test_bad_ids_fail_softly(store):
    assert await store.load("not-a-uuid") is None
    assert await store.update("00000000-0000-0000-0000-000000000000", conversation()) is False


async def test_health_check():
    assert await DjangoStoreBackend().health_check()
