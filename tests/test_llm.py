import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from codebot.config import ModelOptions, Provider, Settings
from codebot.llm import (
    OPENROUTER_BASE_URL,
    ChatModel,
    ModelInvocationError,
    OllamaChatModel,
    OpenAIChatModel,
    build_model,
    collect,
)

from conftest import ScriptedModel

MESSAGES = [{"role": "user", "content": "hi"}]


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


async def _chunks(*texts):
    for text in texts:
        yield _chunk(text)


def _connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


# ---------------------------------------------------------------------------
# collect
# ---------------------------------------------------------------------------


async def test_collect_invokes_without_streaming():
    model = ScriptedModel("whole answer")
    assert await collect(model, MESSAGES) == "whole answer"


async def test_collect_concatenates_fragments_in_order():
    seen = []
    model = ScriptedModel("streamed response text")

    text = await collect(model, MESSAGES, stream=True, on_fragment=seen.append)

    assert text == "streamed response text"
    assert seen == ["strea", "med r", "espon", "se te", "xt"]


async def test_default_stream_is_single_fragment():
    class Fixed(ChatModel):
        async def invoke(self, messages):
            return "all at once"

    assert [f async for f in Fixed().stream(MESSAGES)] == ["all at once"]


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


async def test_openai_invoke_strips_content():
    model = OpenAIChatModel("gpt-4o-mini", "sk-test", temperature=0.1)
    create = AsyncMock(return_value=_completion("  hello  "))
    model._client.chat.completions.create = create

    assert await model.invoke(MESSAGES) == "hello"
    create.assert_awaited_once_with(model="gpt-4o-mini", messages=MESSAGES, temperature=0.1)


async def test_openai_stream_skips_empty_deltas():
    model = OpenAIChatModel("gpt-4o-mini", "sk-test")
    model._client.chat.completions.create = AsyncMock(return_value=_chunks("Hel", None, "lo"))

    assert [f async for f in model.stream(MESSAGES)] == ["Hel", "lo"]


async def test_openai_transport_error_is_wrapped():
    model = OpenAIChatModel("gpt-4o-mini", "sk-test")
    model._client.chat.completions.create = AsyncMock(side_effect=_connection_error())

    with pytest.raises(ModelInvocationError, match="gpt-4o-mini"):
        await model.invoke(MESSAGES)
    with pytest.raises(ModelInvocationError):
        await collect(model, MESSAGES, stream=True)


def test_openai_missing_key_is_wrapped(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ModelInvocationError, match="Cannot create client"):
        OpenAIChatModel("gpt-4o-mini", None)


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


def _ollama(handler) -> OllamaChatModel:
    return OllamaChatModel("llama3", "http://ollama.test/", temperature=0.3, transport=httpx.MockTransport(handler))


async def test_ollama_invoke_posts_chat_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": " hi there "}, "done": True})

    assert await _ollama(handler).invoke(MESSAGES) == "hi there"

    body = json.loads(requests[0].content)
    assert str(requests[0].url) == "http://ollama.test/api/chat"
    assert body == {"model": "llama3", "messages": MESSAGES, "stream": False, "options": {"temperature": 0.3}}


async def test_ollama_stream_reads_ndjson_until_done():
    lines = [
        {"message": {"content": "Hel"}, "done": False},
        {"message": {"content": ""}, "done": False},
        {"message": {"content": "lo"}, "done": True},
        {"message": {"content": "ignored"}, "done": False},
    ]
    content = "\n".join(json.dumps(line) for line in lines).encode()

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=content)

    assert [f async for f in _ollama(handler).stream(MESSAGES)] == ["Hel", "lo"]


async def test_ollama_http_errors_are_wrapped():
    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    def broken(request):
        return httpx.Response(500, text="model not loaded")

    with pytest.raises(ModelInvocationError, match="ollama.test"):
        await _ollama(refused).invoke(MESSAGES)
    with pytest.raises(ModelInvocationError):
        await collect(_ollama(broken), MESSAGES, stream=True)


async def test_ollama_non_json_body_is_wrapped():
    def proxy_page(request):
        return httpx.Response(200, text="<html>proxy error</html>")

    with pytest.raises(ModelInvocationError, match="ollama.test"):
        await _ollama(proxy_page).invoke(MESSAGES)
    with pytest.raises(ModelInvocationError):
        await collect(_ollama(proxy_page), MESSAGES, stream=True)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    return Settings(openai_api_key="sk-openai", openrouter_api_key="sk-or", ollama_base_url="http://gpu:11434")


def test_build_openai(settings):
    model = build_model(ModelOptions(provider=Provider.OPENAI, model="gpt-4o"), settings)
    assert isinstance(model, OpenAIChatModel)
    assert model.name == "gpt-4o"


def test_build_openrouter_uses_its_endpoint(settings):
    model = build_model(ModelOptions(provider=Provider.OPENROUTER, model="meta-llama/llama-3-8b"), settings)
    assert isinstance(model, OpenAIChatModel)
    assert str(model._client.base_url).startswith(OPENROUTER_BASE_URL)
    assert model._client.api_key == "sk-or"


def test_build_ollama(settings):
    model = build_model(ModelOptions(provider=Provider.OLLAMA, model="llama3", temperature=0.0), settings)
    assert isinstance(model, OllamaChatModel)
    assert model._url == "http://gpu:11434/api/chat"
