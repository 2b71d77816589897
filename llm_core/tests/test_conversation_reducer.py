import json
from datetime import datetime, timedelta, timezone
from types import MappingProxyType

import pytest

from llm_core.conversation.reducer import conversation_reducer
from llm_core.conversation.serialization import export_conversation
from llm_core.domain import conversation as actions
from llm_core.domain.conversation import ConversationAction, ConversationMessage, ConversationMetadata
from llm_core.domain.exceptions import (
    ConversationError,
    ConversationNotFoundError,
    InvalidConversationOperationError,
)
from llm_core.domain.models import TextContent


def _create(state=None, **kwargs):
    state = state or {}
    new_state = conversation_reducer(state, actions.create_conversation(**kwargs))
    (new_id,) = set(new_state) - set(state)
    return new_state, new_state[new_id]


def _user_message(text="Hi", provider_id="openai"):
    return {"role": "user", "content": {"type": "text", "text": text}, "provider_id": provider_id}


def test_create_conversation_with_title():
    state, conv = _create(metadata={"title": "Demo"})

    assert conv.id
    assert conv.messages == ()
    assert conv.metadata.title == "Demo"
    assert conv.metadata.updated_at >= conv.metadata.created_at
    assert conv.active_providers == frozenset()
    assert list(state) == [conv.id]


def test_create_conversation_defaults_and_initial_message():
    _, conv = _create(metadata={"title": "", "topic": "billing"}, provider_ids=["openai", "google"], initial_message="hello")

    assert conv.metadata.title == f"Conversation {conv.id}"
    assert conv.metadata.extra["topic"] == "billing"
    assert conv.active_providers == {"openai", "google"}
    assert len(conv.messages) == 1
    assert conv.messages[0].role == "user"
    assert conv.messages[0].content == TextContent(text="hello")
    assert conv.messages[0].provider_id == "openai"


def test_create_generates_distinct_ids():
    state, first = _create()
    state, second = _create(state)
    assert first.id != second.id
    assert len(state) == 2


def test_add_message_appends_and_activates_provider():
    state, conv = _create(metadata={"title": "Demo"})

    new_state = conversation_reducer(state, actions.add_message(conv.id, _user_message()))

    updated = new_state[conv.id]
    assert len(updated.messages) == 1
    assert "openai" in updated.active_providers
    message = updated.messages[0]
    assert message.id
    assert message.role == "user"
    assert message.content.text == "Hi"
    assert message.timestamp >= conv.metadata.created_at
    assert updated.metadata.updated_at >= conv.metadata.updated_at


def test_add_message_assigns_unique_ids():
    state, conv = _create()
    for text in ("a", "b", "c"):
        state = conversation_reducer(state, actions.add_message(conv.id, _user_message(text)))
    ids = [m.id for m in state[conv.id].messages]
    assert len(set(ids)) == 3
    assert [m.content.text for m in state[conv.id].messages] == ["a", "b", "c"]


def test_add_message_unknown_conversation_leaves_state_unchanged():
    state, conv = _create()
    before = dict(state)

    with pytest.raises(ConversationNotFoundError) as exc:
        conversation_reducer(state, actions.add_message("missing", _user_message()))

    assert exc.value.conversation_id == "missing"
    assert str(exc.value) == "Conversation with id missing not found"
    assert dict(state) == before


@pytest.mark.parametrize(
    "message",
    [
        {"role": "tool", "content": "x", "provider_id": "openai"},
        {"role": "user", "content": {"type": "image"}, "provider_id": "openai"},
        {"content": "x"},
    ],
)
def test_add_message_rejects_invalid_messages(message):
    state, conv = _create()
    with pytest.raises(InvalidConversationOperationError):
        conversation_reducer(state, actions.add_message(conv.id, message))


def test_reducer_does_not_mutate_input_and_shares_untouched_conversations():
    state, first = _create()
    state, second = _create(state)
    frozen = MappingProxyType(state)

    new_state = conversation_reducer(frozen, actions.add_message(first.id, _user_message()))

    assert new_state is not frozen
    assert frozen[first.id] is first
    assert first.messages == ()
    assert new_state[second.id] is second
    assert new_state[first.id] is not first


def test_update_conversation_merges_metadata():
    state, conv = _create(metadata={"title": "Old"})

    new_state = conversation_reducer(
        state,
        actions.update_conversation(conv.id, {"metadata": {"title": "New", "tag": "x"}, "active_providers": ["anthropic"]}),
    )

    updated = new_state[conv.id]
    assert updated.metadata.title == "New"
    assert updated.metadata.extra["tag"] == "x"
    assert updated.metadata.created_at == conv.metadata.created_at
    assert updated.active_providers == frozenset({"anthropic"})


def test_update_conversation_rejects_id_change():
    state, conv = _create()
    with pytest.raises(InvalidConversationOperationError):
        conversation_reducer(state, actions.update_conversation(conv.id, {"id": "other"}))


def test_update_conversation_rejects_message_replacement():
    state, conv = _create(initial_message="hi")
    duplicate = state[conv.id].messages[0]

    with pytest.raises(InvalidConversationOperationError):
        conversation_reducer(state, actions.update_conversation(conv.id, {"messages": [duplicate, duplicate]}))
    with pytest.raises(InvalidConversationOperationError):
        conversation_reducer(state, actions.update_conversation(conv.id, {"messages": [{"role": "user", "content": "x"}]}))

    assert state[conv.id].messages == (duplicate,)


@pytest.mark.parametrize("providers", ["openai", ["openai", 3], [""], 42])
def test_update_conversation_rejects_malformed_providers(providers):
    state, conv = _create(provider_ids=["google"])

    with pytest.raises(InvalidConversationOperationError):
        conversation_reducer(state, actions.update_conversation(conv.id, {"active_providers": providers}))


def test_set_metadata_normalizes_timestamps():
    state, conv = _create()

    state = conversation_reducer(state, actions.set_metadata(conv.id, {"created_at": "2024-01-01T00:00:00"}))
    meta = state[conv.id].metadata
    assert meta.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert meta.updated_at >= meta.created_at

    state = conversation_reducer(state, actions.add_message(conv.id, {"role": "user", "content": "later"}))
    assert len(state[conv.id].messages) == 1


@pytest.mark.parametrize("value", ["not a date", 3.5j, None])
def test_set_metadata_rejects_bad_timestamps(value):
    state, conv = _create()

    with pytest.raises(InvalidConversationOperationError):
        conversation_reducer(state, actions.set_metadata(conv.id, {"updated_at": value}))


def test_default_mappings_are_empty_and_read_only():
    now = datetime.now(timezone.utc)
    message = ConversationMessage(id="m1", role="user", content=TextContent(text="x"), timestamp=now, provider_id="")
    metadata = ConversationMetadata(created_at=now, updated_at=now)

    assert dict(message.options) == {}
    assert dict(metadata.extra) == {}
    with pytest.raises(TypeError):
        metadata.extra["k"] = "v"


def test_update_unknown_conversation():
    with pytest.raises(ConversationNotFoundError):
        conversation_reducer({}, actions.update_conversation("nope", {}))


def test_delete_conversation():
    state, conv = _create()
    state, other = _create(state)

    new_state = conversation_reducer(state, actions.delete_conversation(conv.id))

    assert conv.id not in new_state
    assert new_state[other.id] is other
    assert conversation_reducer(new_state, actions.delete_conversation("missing")) == new_state


def test_set_metadata_keeps_updated_after_created():
    state, conv = _create()
    earlier = conv.metadata.created_at - timedelta(days=1)

    new_state = conversation_reducer(
        state, actions.set_metadata(conv.id, {"description": "notes", "updated_at": earlier})
    )

    meta = new_state[conv.id].metadata
    assert meta.description == "notes"
    assert meta.updated_at >= meta.created_at


def test_add_and_remove_provider():
    state, conv = _create()

    state = conversation_reducer(state, actions.add_provider(conv.id, "google"))
    assert state[conv.id].active_providers == {"google"}
    state = conversation_reducer(state, actions.add_provider(conv.id, "google"))
    assert state[conv.id].active_providers == {"google"}

    state = conversation_reducer(state, actions.remove_provider(conv.id, "google"))
    assert state[conv.id].active_providers == frozenset()


def test_remove_inactive_provider_does_not_touch_updated_at():
    state, conv = _create()

    with pytest.raises(InvalidConversationOperationError) as exc:
        conversation_reducer(state, actions.remove_provider(conv.id, "openai"))

    assert exc.value.code == "INVALID_CONVERSATION_OPERATION"
    assert state[conv.id].metadata.updated_at == conv.metadata.updated_at


def test_clear_history_keeps_providers():
    state, conv = _create(initial_message="hi", provider_ids=["openai"])

    state = conversation_reducer(state, actions.clear_history(conv.id))

    assert state[conv.id].messages == ()
    assert state[conv.id].active_providers == {"openai"}


def test_import_round_trip():
    state, conv = _create(metadata={"title": "Demo", "topic": "x"}, provider_ids=["openai", "anthropic"])
    state = conversation_reducer(state, actions.add_message(conv.id, _user_message()))
    original = state[conv.id]
    serialized = export_conversation(original)

    imported_state = conversation_reducer({}, actions.import_conversation(serialized))

    assert imported_state[conv.id] == original


def test_import_missing_metadata_fails():
    payload = json.dumps({"id": "c1", "messages": [], "active_providers": []})

    with pytest.raises(ConversationError) as exc:
        conversation_reducer({}, actions.import_conversation(payload))

    assert "Failed to import conversation" in exc.value.message


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        json.dumps(
            {
                "id": "c1",
                "messages": [],
                "metadata": {"created_at": "2024-01-02T00:00:00Z", "updated_at": "2024-01-01T00:00:00Z"},
                "active_providers": [],
            }
        ),
        json.dumps(
            {
                "id": "c1",
                "messages": [
                    {"id": "m1", "role": "user", "content": {"type": "text", "text": "a"}, "timestamp": "2024-01-01T00:00:00Z"},
                    {"id": "m1", "role": "user", "content": {"type": "text", "text": "b"}, "timestamp": "2024-01-01T00:00:00Z"},
                ],
                "metadata": {"created_at": "2024-01-01T00:00:00Z", "updated_at": "2024-01-01T00:00:00Z"},
                "active_providers": [],
            }
        ),
    ],
)
def test_import_rejects_invalid_payloads(payload):
    with pytest.raises(ConversationError):
        conversation_reducer({}, actions.import_conversation(payload))


def test_unknown_action_returns_same_state():
    state, _ = _create()
    assert conversation_reducer(state, ConversationAction(type="UNKNOWN_ACTION")) is state
