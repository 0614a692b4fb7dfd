"""OpenAI-compatible chat completions: OpenAI, xAI and Perplexity.

xAI and Perplexity expose the OpenAI wire format, so they reuse the
``openai`` SDK with a different base URL. Perplexity adds top-level
``citations`` (a list of URLs) to its responses.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, ClassVar

import openai
from openai import AsyncOpenAI

from quorum.config import ProviderConfig
from quorum.types import Citation, Usage

from .provider import ChatChunk, ChatError, ChatProvider, ChatResult, chat_registry

_log = logging.getLogger(__name__)


def _messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.append({"role": "user", "content": prompt})
    return messages


def _usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    prompt_tokens = getattr(raw, "prompt_tokens", 0) or 0
    completion_tokens = getattr(raw, "completion_tokens", 0) or 0
    return Usage(
        input_tokens=prompt_tokens,
        output_tokens=completion_tokens,
        total_tokens=getattr(raw, "total_tokens", 0) or prompt_tokens + completion_tokens,
    )


def _citations(raw: Any) -> list[Citation]:
    """Perplexity-style citations: ``search_results`` objects or bare URL strings."""
    results = getattr(raw, "search_results", None)
    if results:
        return [
            Citation(url=r["url"], title=r.get("title"), snippet=r.get("snippet"))
            for r in results
            if isinstance(r, dict) and r.get("url")
        ]
    urls = getattr(raw, "citations", None) or []
    return [Citation(url=u) for u in urls if isinstance(u, str)]


def _wrap(exc: openai.APIError, model_id: str) -> ChatError:
    if isinstance(exc, openai.APIConnectionError):
        return ChatError(str(exc), model=model_id, transport=True)
    status = exc.status_code if isinstance(exc, openai.APIStatusError) else None
    return ChatError(str(exc), model=model_id, status_code=status, code=exc.code)


class OpenAIChatProvider(ChatProvider):
    """Chat completions through ``AsyncOpenAI``.

    Args:
        config: Provider connection configuration.
    """

    default_base_url: ClassVar[str | None] = None

    def __init__(self, config: ProviderConfig, *, client: AsyncOpenAI | None = None) -> None:
        super().__init__(config)
        self._client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url or self.default_base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def complete(self, prompt: str, model_id: str, *, system_prompt: str | None = None) -> ChatResult:
        _log.debug("%s complete: model=%s, prompt_chars=%d", self.config.provider, model_id, len(prompt))
        try:
            response = await self._client.chat.completions.create(
                model=model_id, messages=_messages(prompt, system_prompt)
            )
        except openai.APIError as exc:
            _log.error(
                "%s complete failed: model=%s, error=%s", self.config.provider, model_id, exc, exc_info=True
            )
            raise _wrap(exc, model_id) from exc
        message = response.choices[0].message if response.choices else None
        return ChatResult(
            content=(message.content if message else None) or "",
            reasoning=getattr(message, "reasoning_content", None) if message else None,
            usage=_usage(response.usage),
            citations=_citations(response),
        )

    async def stream(
        self, prompt: str, model_id: str, *, system_prompt: str | None = None
    ) -> AsyncIterator[ChatChunk]:
        _log.debug("%s stream: model=%s, prompt_chars=%d", self.config.provider, model_id, len(prompt))
        cited = False
        try:
            response = await self._client.chat.completions.create(
                model=model_id,
                messages=_messages(prompt, system_prompt),
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in response:
                delta = chunk.choices[0].delta.content if chunk.choices else None
                citations = [] if cited else _citations(chunk)
                cited = cited or bool(citations)
                if delta or chunk.usage or citations:
                    yield ChatChunk(delta=delta or "", usage=_usage(chunk.usage), citations=citations)
        except openai.APIError as exc:
            _log.error(
                "%s stream failed: model=%s, error=%s", self.config.provider, model_id, exc, exc_info=True
            )
            raise _wrap(exc, model_id) from exc

    async def aclose(self) -> None:
        await self._client.close()


class XAIChatProvider(OpenAIChatProvider):
    default_base_url = "https://api.x.ai/v1"


class PerplexityChatProvider(OpenAIChatProvider):
    default_base_url = "https://api.perplexity.ai"


chat_registry.register("openai", OpenAIChatProvider)
chat_registry.register("xai", XAIChatProvider)
chat_registry.register("perplexity", PerplexityChatProvider)
