"""Google Gemini chat provider over ``google-genai``."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors

from quorum.config import ProviderConfig
from quorum.types import Usage

from .provider import ChatChunk, ChatError, ChatProvider, ChatResult, chat_registry

_log = logging.getLogger(__name__)


def _usage(raw: Any) -> Usage | None:
    meta = getattr(raw, "usage_metadata", None)
    if not meta:
        return None
    return Usage(
        input_tokens=meta.prompt_token_count or 0,
        output_tokens=meta.candidates_token_count or 0,
        total_tokens=meta.total_token_count or 0,
    )


def _text(raw: Any) -> tuple[str, str | None]:
    """Answer text and thought summary of the first candidate."""
    if not raw.candidates:
        return "", None
    content = raw.candidates[0].content
    text: list[str] = []
    thoughts: list[str] = []
    for part in getattr(content, "parts", None) or []:
        value = getattr(part, "text", None)
        if not value:
            continue
        (thoughts if getattr(part, "thought", False) else text).append(value)
    return "".join(text), "".join(thoughts) or None


def _config(system_prompt: str | None) -> dict[str, Any] | None:
    return {"system_instruction": system_prompt} if system_prompt else None


class GeminiChatProvider(ChatProvider):
    """Wraps ``google.genai.Client`` for single-turn questions.

    Args:
        config: Provider connection configuration.
    """

    def __init__(self, config: ProviderConfig, *, client: genai.Client | None = None) -> None:
        super().__init__(config)
        self._client = client or genai.Client(api_key=config.api_key)

    async def complete(self, prompt: str, model_id: str, *, system_prompt: str | None = None) -> ChatResult:
        _log.debug("gemini complete: model=%s, prompt_chars=%d", model_id, len(prompt))
        try:
            response = await self._client.aio.models.generate_content(
                model=model_id, contents=prompt, config=_config(system_prompt)
            )
        except genai_errors.APIError as exc:
            _log.error("gemini complete failed: model=%s, error=%s", model_id, exc, exc_info=True)
            raise ChatError(str(exc), model=model_id, status_code=exc.code, code=exc.status) from exc
        except httpx.TransportError as exc:
            raise ChatError(str(exc), model=model_id, transport=True) from exc
        content, reasoning = _text(response)
        return ChatResult(content=content, reasoning=reasoning, usage=_usage(response))

    async def stream(
        self, prompt: str, model_id: str, *, system_prompt: str | None = None
    ) -> AsyncIterator[ChatChunk]:
        _log.debug("gemini stream: model=%s, prompt_chars=%d", model_id, len(prompt))
        try:
            async for chunk in await self._client.aio.models.generate_content_stream(
                model=model_id, contents=prompt, config=_config(system_prompt)
            ):
                delta, _ = _text(chunk)
                usage = _usage(chunk)
                if delta or usage:
                    yield ChatChunk(delta=delta, usage=usage)
        except genai_errors.APIError as exc:
            _log.error("gemini stream failed: model=%s, error=%s", model_id, exc, exc_info=True)
            raise ChatError(str(exc), model=model_id, status_code=exc.code, code=exc.status) from exc
        except httpx.TransportError as exc:
            raise ChatError(str(exc), model=model_id, transport=True) from exc


chat_registry.register("google", GeminiChatProvider)
