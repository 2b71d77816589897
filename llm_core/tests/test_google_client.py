import json

import pytest
from conftest import FakeResponse

from llm_core.domain.exceptions import AuthenticationError, InvalidRequestError, RateLimitError
from llm_core.domain.models import ChatCompletionRequest, ChatMessage, ChatOptions
from llm_core.providers.google_client import GoogleProvider
from llm_core.tools.definitions import ToolDef


def _request(**options):
    return ChatCompletionRequest(
        messages=[
            ChatMessage.text("user", "hi"),
            ChatMessage.text("assistant", "   "),
            ChatMessage.text("assistant", "hello"),
            ChatMessage.text("user", "tell me"),
        ],
        options=ChatOptions(**options),
    )


def _answer(text, finish_reason="STOP"):
    return FakeResponse(
        json_data={
            "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": finish_reason}],
            "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6, "totalTokenCount": 10},
            "modelVersion": "gemini-1.5-flash-002",
        }
    )


def test_google_payload_and_response(fake_http, settings_stub):
    fake_http.add(_answer("All good"))
    provider = GoogleProvider(settings_stub)

    result = provider.generate_chat_completion(_request(system_message="be brief", top_p=0.9, top_k=3))

    call = fake_http.calls[0]
    assert call["url"] == "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"
    assert call["headers"]["x-goog-api-key"] == "gk-test"
    body = call["json"]
    assert body["systemInstruction"] == {"parts": [{"text": "be brief"}]}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["generationConfig"] == {"maxOutputTokens": 4096, "topP": 0.9, "topK": 3}

    assert result.text == "All good"
    assert result.model == "gemini-1.5-flash-002"
    assert result.finish_reason == "STOP"
    assert result.usage.total_tokens == 10


def test_google_unsupported_model(fake_http, settings_stub):
    provider = GoogleProvider(settings_stub)

    with pytest.raises(InvalidRequestError) as exc:
        provider.generate_chat_completion(_request(model="gemini-unknown"))
    assert exc.value.message == "Model gemini-unknown not supported by Google"
    assert fake_http.calls == []


def test_google_function_call_gets_generated_id(fake_http, settings_stub):
    fake_http.add(
        FakeResponse(
            json_data={
                "candidates": [
                    {
                        "content": {"parts": [{"functionCall": {"name": "ping", "args": {"host": "a"}}}]},
                        "finishReason": "STOP",
                    }
                ]
            }
        )
    )
    provider = GoogleProvider(settings_stub)

    result = provider.generate_chat_completion(_request(tools=[ToolDef(name="ping", description="Ping")]))

    declaration = fake_http.calls[0]["json"]["tools"][0]["functionDeclarations"][0]
    assert declaration["name"] == "ping"
    assert declaration["parameters"]["required"] == ["input"]
    assert result.tool_calls[0].id.startswith("call_")
    assert result.tool_calls[0].function.name == "ping"
    assert json.loads(result.tool_calls[0].function.arguments) == {"host": "a"}


def test_google_prompt_blocked(fake_http, settings_stub):
    fake_http.add(FakeResponse(json_data={"promptFeedback": {"blockReason": "SAFETY"}}))
    provider = GoogleProvider(settings_stub)

    result = provider.generate_chat_completion(_request())

    assert result.text == ""
    assert result.refusal == "SAFETY"
    assert result.finish_reason == "SAFETY"


def test_google_emulated_stream(fake_http, settings_stub):
    text = "The quick  brown\nfox"
    fake_http.add(_answer(text))
    provider = GoogleProvider(settings_stub)

    chunks = list(provider.stream_chat_completion(_request()))

    assert "".join(c.text or "" for c in chunks) == text
    assert [c.text for c in chunks[:3]] == ["The", " ", "quick"]
    assert all(c.finish_reason is None for c in chunks[:-1])
    assert chunks[-1].finish_reason == "STOP"
    assert chunks[-1].text is None


def test_google_rate_limit(fake_http, settings_stub):
    fake_http.add(FakeResponse(status_code=429, text='{"error": {"status": "RESOURCE_EXHAUSTED"}}'))
    provider = GoogleProvider(settings_stub)

    with pytest.raises(RateLimitError):
        provider.generate_chat_completion(_request())


def test_google_embeddings(fake_http, settings_stub):
    fake_http.add(FakeResponse(json_data={"embeddings": [{"values": [0.1, 0.2]}, {"values": [0.3]}]}))
    provider = GoogleProvider(settings_stub)

    result = provider.generate_embedding(["a", "b"])

    call = fake_http.calls[0]
    assert call["url"].endswith("/models/text-embedding-004:batchEmbedContents")
    assert len(call["json"]["requests"]) == 2
    assert call["json"]["requests"][0]["model"] == "models/text-embedding-004"
    assert result.embedding == [0.1, 0.2]
    assert result.embeddings == [[0.1, 0.2], [0.3]]


def test_google_embeddings_empty(fake_http, settings_stub):
    fake_http.add(FakeResponse(json_data={"embeddings": []}))
    provider = GoogleProvider(settings_stub)

    with pytest.raises(InvalidRequestError):
        provider.generate_embedding("a")


def test_google_model_refresh(fake_http, settings_stub):
    fake_http.add(
        FakeResponse(
            json_data={
                "models": [
                    {
                        "name": "models/gemini-2.5-pro",
                        "displayName": "Gemini 2.5 Pro",
                        "outputTokenLimit": 65536,
                        "supportedGenerationMethods": ["generateContent", "countTokens"],
                    },
                    {"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]},
                ]
            }
        )
    )
    provider = GoogleProvider(settings_stub, refresh_models=True)
    provider._refresh_thread.join(timeout=5)

    ids = [m.id for m in provider.list_models()]
    assert "gemini-2.5-pro" in ids
    assert "gemini-1.5-flash" in ids
    assert "embedding-001" not in ids
    assert fake_http.calls[0]["params"] == {"pageSize": 1000}


def test_google_model_refresh_failure_keeps_catalog(fake_http, settings_stub):
    fake_http.add(FakeResponse(status_code=500, text="boom"))
    provider = GoogleProvider(settings_stub, refresh_models=True)
    provider._refresh_thread.join(timeout=5)

    assert [m.id for m in provider.list_models()] == ["gemini-1.5-flash", "gemini-1.5-pro", "gemini-2.0-flash"]


def test_google_unauthorized(fake_http, settings_stub):
    fake_http.add(FakeResponse(status_code=401, text='{"error": {"status": "UNAUTHENTICATED"}}'))
    provider = GoogleProvider(settings_stub)

    with pytest.raises(AuthenticationError) as exc:
        provider.generate_chat_completion(_request())
    assert exc.value.provider == "google"
    assert exc.value.http_status == 401


def test_google_invalid_api_key_on_bad_request(fake_http, settings_stub):
    fake_http.add(
        FakeResponse(
            status_code=400,
            text='{"error": {"code": 400, "message": "API key not valid. Please pass a valid API key.", "status": "INVALID_ARGUMENT"}}',
        )
    )
    provider = GoogleProvider(settings_stub)

    with pytest.raises(AuthenticationError) as exc:
        provider.generate_chat_completion(_request())
    assert exc.value.provider == "google"
    assert exc.value.extra["status"] == 400
