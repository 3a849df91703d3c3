# llm.py
# Model invocation adapters.
#
# The graph only sees ChatModel: invoke() returns the full text, stream()
# yields text fragments in arrival order. Transport errors from any
# provider surface as ModelInvocationError. Retries are not done here.

import json
import logging
from collections.abc import AsyncIterator, Callable

import httpx
from openai import AsyncOpenAI, OpenAIError

from codebot.config import ModelOptions, Provider, Settings

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class ModelInvocationError(Exception):
    """Raised when the model provider cannot be reached or rejects the request."""


class ChatModel:
    """Base adapter. Subclasses implement invoke(); stream() defaults to one fragment."""

    name: str = "model"

    async def invoke(self, messages: list[dict]) -> str:
        raise NotImplementedError

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        yield await self.invoke(messages)


async def collect(
    model: ChatModel,
    messages: list[dict],
    *,
    stream: bool = False,
    on_fragment: Callable[[str], None] | None = None,
) -> str:
    """
    Return the model's complete answer.

    With stream=True fragments are concatenated in arrival order and the
    text is returned only after the stream is exhausted.
    """
    if not stream:
        return await model.invoke(messages)

    parts: list[str] = []
    async for fragment in model.stream(messages):
        if not fragment:
            continue
        parts.append(fragment)
        if on_fragment is not None:
            on_fragment(fragment)
    return "".join(parts)


# ---------------------------------------------------------------------------
# OpenAI-compatible providers (OpenAI, OpenRouter)
# ---------------------------------------------------------------------------


class OpenAIChatModel(ChatModel):
    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str | None = None,
        temperature: float = 0.7,
    ) -> None:
        self.name = model
        self._temperature = temperature
        try:
            self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)
        except OpenAIError as exc:
            raise ModelInvocationError(f"Cannot create client for {model}: {exc}") from exc

    async def invoke(self, messages: list[dict]) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.name,
                messages=messages,
                temperature=self._temperature,
            )
        except OpenAIError as exc:
            raise ModelInvocationError(f"{self.name} request failed: {exc}") from exc
        return (response.choices[0].message.content or "").strip()

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        try:
            chunks = await self._client.chat.completions.create(
                model=self.name,
                messages=messages,
                temperature=self._temperature,
                stream=True,
            )
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except OpenAIError as exc:
            raise ModelInvocationError(f"{self.name} stream failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Ollama (native chat endpoint)
# ---------------------------------------------------------------------------


class OllamaChatModel(ChatModel):
    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        temperature: float = 0.7,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = model
        self._url = base_url.rstrip("/") + "/api/chat"
        self._temperature = temperature
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _payload(self, messages: list[dict], stream: bool) -> dict:
        return {
            "model": self.name,
            "messages": messages,
            "stream": stream,
            "options": {"temperature": self._temperature},
        }

    async def invoke(self, messages: list[dict]) -> str:
        try:
            async with self._client() as client:
                response = await client.post(self._url, json=self._payload(messages, False))
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ModelInvocationError(f"Ollama request to {self._url} failed: {exc}") from exc
        return (data.get("message", {}).get("content") or "").strip()

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self._url, json=self._payload(messages, True)
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        chunk = json.loads(line)
                        content = chunk.get("message", {}).get("content")
                        if content:
                            yield content
                        if chunk.get("done"):
                            break
        except (httpx.HTTPError, ValueError) as exc:
            raise ModelInvocationError(f"Ollama stream from {self._url} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_model(options: ModelOptions, settings: Settings) -> ChatModel:
    """Create the adapter for the configured provider."""
    logger.debug("Building %s model %s (temperature=%s)", options.provider.value, options.model, options.temperature)

    if options.provider is Provider.OPENAI:
        return OpenAIChatModel(options.model, settings.openai_api_key, temperature=options.temperature)
    if options.provider is Provider.OPENROUTER:
        return OpenAIChatModel(
            options.model,
            settings.openrouter_api_key,
            base_url=OPENROUTER_BASE_URL,
            temperature=options.temperature,
        )
    if options.provider is Provider.OLLAMA:
        return OllamaChatModel(options.model, settings.ollama_base_url, temperature=options.temperature)
    raise ValueError(f"Unsupported model provider: {options.provider}")
