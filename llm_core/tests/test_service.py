import pytest

from llm_core.api.service import ConversationChat, history_to_messages
from llm_core.conversation.store import InMemoryConversationStore
from llm_core.domain.exceptions import RateLimitError
from llm_core.domain.models import ChatCompletionResponse, ChatOptions, StreamChunk
from llm_core.providers.registry import ProviderRegistry


class FakeProvider:
    name = "fake"
    default_options = ChatOptions(model="fake-1")

    def __init__(self, fail=False):
        self.fail = fail
        self.requests = []

    def generate_chat_completion(self, request):
        self.requests.append(request)
        if self.fail:
            raise RateLimitError("Rate limit exceeded for fake", "fake")
        return ChatCompletionResponse(model="fake-1", text=f"echo: {request.messages[-1].text_content}")

    def stream_chat_completion(self, request):
        self.requests.append(request)
        yield StreamChunk(model="fake-1", text="ab")
        yield StreamChunk(model="fake-1", text="cd")
        yield StreamChunk(model="fake-1", finish_reason="stop")

    def list_models(self):
        return []


def _chat(provider):
    registry = ProviderRegistry()
    registry.register_llm("fake", lambda: provider)
    store = InMemoryConversationStore()
    return ConversationChat(registry, store), store


def test_send_records_both_messages():
    provider = FakeProvider()
    chat, store = _chat(provider)
    conv = store.create_conversation({"title": "Demo"})

    result = chat.send(conv.id, "fake", "hello", ChatOptions(system_message="sys"))

    assert result.text == "echo: hello"
    history = store.get_history(conv.id)
    assert [(m.role, m.content.text) for m in history] == [("user", "hello"), ("assistant", "echo: hello")]
    assert history[1].options["model"] == "fake-1"
    assert store.get_conversation(conv.id).active_providers == {"fake"}
    assert provider.requests[0].options.system_message == "sys"


def test_send_passes_full_history():
    provider = FakeProvider()
    chat, store = _chat(provider)
    conv = store.create_conversation()

    chat.send(conv.id, "fake", "one")
    chat.send(conv.id, "fake", "two")

    assert [m.text_content for m in provider.requests[1].messages] == ["one", "echo: one", "two"]


def test_send_failure_keeps_user_message_only():
    chat, store = _chat(FakeProvider(fail=True))
    conv = store.create_conversation()

    with pytest.raises(RateLimitError):
        chat.send(conv.id, "fake", "hello")

    assert [m.role for m in store.get_history(conv.id)] == ["user"]


def test_stream_records_concatenated_reply():
    chat, store = _chat(FakeProvider())
    conv = store.create_conversation()

    chunks = list(chat.stream(conv.id, "fake", "hi"))

    assert [c.text for c in chunks] == ["ab", "cd", None]
    assert store.get_history(conv.id)[-1].content.text == "abcd"


def test_stream_abandoned_does_not_record_reply():
    chat, store = _chat(FakeProvider())
    conv = store.create_conversation()

    stream = chat.stream(conv.id, "fake", "hi")
    next(stream)
    stream.close()

    assert [m.role for m in store.get_history(conv.id)] == ["user"]


def test_history_to_messages():
    store = InMemoryConversationStore()
    conv = store.create_conversation(provider_ids=["openai"], initial_message="hi")

    messages = history_to_messages(store.get_history(conv.id))

    assert messages[0].role == "user"
    assert messages[0].text_content == "hi"
    assert messages[0].provider_id == "openai"
