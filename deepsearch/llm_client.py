"""OpenRouter LLM client factory and the generative model adapter.

The pipeline needs two things from a model: a structured object validated
against a pydantic schema (plans and analyses), and a text stream forwarded
fragment by fragment (the final report).
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, TypeVar

from pydantic import BaseModel, ValidationError

from deepsearch.config import settings
from deepsearch.errors import AdapterError, AdapterTimeout
from deepsearch.services import logger as log_service
from deepsearch.services.env_safety import sanitize_ssl_keylogfile
from deepsearch.services.prompt_store import render_prompt

T = TypeVar("T", bound=BaseModel)


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TextBlock:
    type: str
    text: str


@dataclass
class MessageResponse:
    content: list[Any]
    usage: Usage


class OpenRouterStream:
    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._usage = Usage()
        self._finished = False

    async def __aenter__(self) -> "OpenRouterStream":
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            usage = getattr(chunk, "usage", None)
            if usage:
                self._usage = Usage(
                    input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                    output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                )

            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            text = getattr(delta, "content", None) if delta else None
            if text:
                yield text
        self._finished = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()

    async def get_final_message(self) -> MessageResponse:
        if not self._finished:
            async for _ in self.text_stream:
                pass
        return MessageResponse(content=[], usage=self._usage)


class OpenRouterMessagesAdapter:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _to_openai_messages(system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        openai_messages: list[dict[str, Any]] = []
        if system:
            openai_messages.append({"role": "system", "content": system})
        for message in messages:
            openai_messages.append({"role": message["role"], "content": str(message["content"])})
        return openai_messages

    @staticmethod
    def _from_openai_response(response: Any) -> MessageResponse:
        choice = response.choices[0].message
        content: list[Any] = []
        text = getattr(choice, "content", None)
        if text:
            content.append(TextBlock(type="text", text=text))

        usage = getattr(response, "usage", None)
        return MessageResponse(
            content=content,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.0,
        json_mode: bool = False,
    ) -> MessageResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_openai_messages(system, messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)
        return self._from_openai_response(response)

    def stream(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.0,
    ) -> OpenRouterStream:
        stream = self._client.chat.completions.create(
            model=model,
            messages=self._to_openai_messages(system, messages),
            max_tokens=max_tokens,
            temperature=temperature,
            stream=True,
            stream_options={"include_usage": True},
        )
        return OpenRouterStream(stream)


class OpenRouterClientAdapter:
    def __init__(self, openai_client: Any):
        self.messages = OpenRouterMessagesAdapter(openai_client)


def get_client() -> OpenRouterClientAdapter:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    if not settings.openrouter_api_key:
        raise RuntimeError("OPENROUTER_API_KEY is not configured")

    sanitize_ssl_keylogfile()
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterClientAdapter(openai_client)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: OpenRouterClientAdapter | None = None


def client() -> OpenRouterClientAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def extract_response_text(response: Any) -> str:
    blocks = getattr(response, "content", None) or []
    text_parts: list[str] = []
    for block in blocks:
        btype = getattr(block, "type", None)
        btext = getattr(block, "text", None)
        is_text_like_type = btype in (None, "text") or not isinstance(btype, str)
        if is_text_like_type and isinstance(btext, str) and btext.strip():
            text_parts.append(btext)
    return "\n".join(text_parts).strip()


def extract_json_object(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


class GenerativeModel:
    """Adapter over the model provider used by the research pipeline.

    Every failure, including timeouts and schema violations, surfaces as an
    ``AdapterError`` so the orchestrator can handle it at the step boundary.
    """

    name = "model"

    def __init__(self, llm: OpenRouterClientAdapter | None = None, *, timeout: float | None = None):
        self.client = llm
        self.timeout = timeout if timeout is not None else float(settings.llm_timeout_seconds)

    def _active_client(self) -> OpenRouterClientAdapter:
        return self.client or client()

    async def generate_object(
        self,
        schema: type[T],
        prompt: str,
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        caller: str = "generate_object",
    ) -> T:
        system = render_prompt(
            "llm.object_system",
            schema_json=json.dumps(schema.model_json_schema()),
        )
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._active_client().messages.create(
                    model=model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=temperature,
                    json_mode=True,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            log_service.log_llm_call(model, caller, status="timeout", error="timed out")
            raise AdapterTimeout(self.name, f"{caller} timed out after {self.timeout:g}s") from exc
        except Exception as exc:
            log_service.log_llm_call(model, caller, status="error", error=str(exc))
            raise AdapterError(self.name, f"{caller} failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

        try:
            payload = extract_json_object(extract_response_text(response))
            return schema.model_validate(payload)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise AdapterError(self.name, f"{caller} returned an invalid {schema.__name__}: {exc}") from exc

    async def stream_text(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 4000,
        caller: str = "stream_text",
    ) -> AsyncIterator[str]:
        """Yield text fragments as soon as the provider produces them."""
        t0 = time.monotonic()
        try:
            async with self._active_client().messages.stream(
                model=model,
                max_tokens=max_tokens,
                system="",
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
            ) as stream:
                fragments = stream.text_stream.__aiter__()
                while True:
                    try:
                        # The timeout bounds the wait for each fragment.
                        fragment = await asyncio.wait_for(fragments.__anext__(), timeout=self.timeout)
                    except StopAsyncIteration:
                        break
                    yield fragment
                final_msg = await stream.get_final_message()
        except asyncio.TimeoutError as exc:
            log_service.log_llm_call(model, caller, status="timeout", error="timed out")
            raise AdapterTimeout(self.name, f"{caller} stalled for {self.timeout:g}s") from exc
        except AdapterError:
            raise
        except Exception as exc:
            log_service.log_llm_call(model, caller, status="error", error=str(exc))
            raise AdapterError(self.name, f"{caller} failed: {exc}") from exc

        usage = getattr(final_msg, "usage", None)
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )


_model: GenerativeModel | None = None


def generative_model() -> GenerativeModel:
    """Get or create the shared generative model adapter."""
    global _model
    if _model is None:
        _model = GenerativeModel()
    return _model
