"""Minimal demonstration of a conversation backed by a registered provider."""

import sys

from llm_core import ConversationChat, InMemoryConversationStore, build_default_registry

if __name__ == "__main__":
    provider = sys.argv[1] if len(sys.argv) > 1 else "openai"
    question = "请用一句话介绍你自己，并把结论放在 <summary></summary> 标签中"

    store = InMemoryConversationStore()
    chat = ConversationChat(build_default_registry(), store)
    conv = store.create_conversation({"title": "Demo"}, provider_ids=[provider])

    print("User:", question)
    print("Agent: ", end="")
    for chunk in chat.stream(conv.id, provider, question):
        if chunk.text:
            print(chunk.text, end="", flush=True)
    print()
    print(store.export_conversation(conv.id))
