"""OpenRouter chat-completion client via the OpenAI-compatible SDK."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import openai

from clarus.config import settings
from clarus.errors import NonRetryableError, TransientError


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ChatCompletion:
    content: str | None
    usage: Usage
    model: str


class OpenRouterChatAdapter:
    """Single-turn chat completions with provider errors mapped to retry classes."""

    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _build_messages(system: str, user: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})
        return messages

    def _from_openai_response(self, response: Any, model: str) -> ChatCompletion:
        choices = getattr(response, "choices", None) or []
        content = None
        if choices:
            message = getattr(choices[0], "message", None)
            content = getattr(message, "content", None) if message is not None else None

        usage = getattr(response, "usage", None)
        return ChatCompletion(
            content=content,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=getattr(response, "model", None) or model,
        )

    async def complete(
        self,
        *,
        model: str,
        system: str,
        user: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        top_p: float | None = None,
        json_mode: bool = False,
        timeout: float | None = None,
    ) -> ChatCompletion:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._build_messages(system, user),
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if top_p is not None:
            kwargs["top_p"] = top_p
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as exc:
            raise TransientError("OpenRouter request timed out", timed_out=True) from exc
        except openai.APIStatusError as exc:
            status = exc.status_code
            message = f"OpenRouter API error ({status})"
            if status == 429 or status >= 500:
                raise TransientError(message, status) from exc
            raise NonRetryableError(message, status) from exc
        except openai.APIConnectionError as exc:
            raise TransientError(f"OpenRouter connection failed: {exc}") from exc

        return self._from_openai_response(response, model)


def get_client() -> OpenRouterChatAdapter:
    """Get OpenRouter client via OpenAI-compatible SDK.

    SDK-level retries are disabled; callers own their retry policy.
    """
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        max_retries=0,
        default_headers={
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.openrouter_title,
        },
    )
    return OpenRouterChatAdapter(openai_client)


_client: OpenRouterChatAdapter | None = None


def client() -> OpenRouterChatAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
