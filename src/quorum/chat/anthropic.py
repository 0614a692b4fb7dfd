"""Anthropic messages chat provider."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from quorum.config import ProviderConfig
from quorum.types import Usage

from .provider import ChatChunk, ChatError, ChatProvider, ChatResult, chat_registry

_log = logging.getLogger(__name__)

_DEFAULT_MAX_TOKENS = 8192


def _parse_response(raw: Any) -> ChatResult:
    text: list[str] = []
    reasoning: list[str] = []
    for block in raw.content:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text.append(block.text)
        elif block_type == "thinking":
            reasoning.append(getattr(block, "thinking", ""))
    usage = None
    if raw.usage:
        usage = Usage(
            input_tokens=raw.usage.input_tokens,
            output_tokens=raw.usage.output_tokens,
            total_tokens=raw.usage.input_tokens + raw.usage.output_tokens,
        )
    return ChatResult(content="".join(text), reasoning="".join(reasoning) or None, usage=usage)


def _wrap(exc: anthropic.APIError, model_id: str) -> ChatError:
    if isinstance(exc, anthropic.APIConnectionError):
        return ChatError(str(exc), model=model_id, transport=True)
    status = exc.status_code if isinstance(exc, anthropic.APIStatusError) else None
    body = exc.body if isinstance(exc.body, dict) else {}
    error = body.get("error")
    code = error.get("type") if isinstance(error, dict) else None
    return ChatError(str(exc), model=model_id, status_code=status, code=code)


class AnthropicChatProvider(ChatProvider):
    """Wraps ``anthropic.AsyncAnthropic`` for single-turn questions.

    Args:
        config: Provider connection configuration.
    """

    def __init__(self, config: ProviderConfig, *, client: AsyncAnthropic | None = None) -> None:
        super().__init__(config)
        self._client = client or AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    def _kwargs(self, prompt: str, model_id: str, system_prompt: str | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": _DEFAULT_MAX_TOKENS,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        return kwargs

    async def complete(self, prompt: str, model_id: str, *, system_prompt: str | None = None) -> ChatResult:
        _log.debug("anthropic complete: model=%s, prompt_chars=%d", model_id, len(prompt))
        try:
            response = await self._client.messages.create(**self._kwargs(prompt, model_id, system_prompt))
        except anthropic.APIError as exc:
            _log.error("anthropic complete failed: model=%s, error=%s", model_id, exc, exc_info=True)
            raise _wrap(exc, model_id) from exc
        return _parse_response(response)

    async def stream(
        self, prompt: str, model_id: str, *, system_prompt: str | None = None
    ) -> AsyncIterator[ChatChunk]:
        _log.debug("anthropic stream: model=%s, prompt_chars=%d", model_id, len(prompt))
        input_tokens = 0
        try:
            response = await self._client.messages.create(
                **self._kwargs(prompt, model_id, system_prompt), stream=True
            )
            async for event in response:
                if event.type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    input_tokens = getattr(usage, "input_tokens", 0) or 0
                elif event.type == "content_block_delta":
                    if getattr(event.delta, "type", None) == "text_delta":
                        yield ChatChunk(delta=event.delta.text)
                elif event.type == "message_delta":
                    output_tokens = getattr(event.usage, "output_tokens", None) or 0
                    yield ChatChunk(
                        usage=Usage(
                            input_tokens=input_tokens,
                            output_tokens=output_tokens,
                            total_tokens=input_tokens + output_tokens,
                        )
                    )
        except anthropic.APIError as exc:
            _log.error("anthropic stream failed: model=%s, error=%s", model_id, exc, exc_info=True)
            raise _wrap(exc, model_id) from exc

    async def aclose(self) -> None:
        await self._client.close()


chat_registry.register("anthropic", AnthropicChatProvider)
