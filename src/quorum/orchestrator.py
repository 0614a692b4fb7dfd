"""Query orchestration: model resolution, routing and single-question entry points.

``Orchestrator`` resolves a ``Model`` from a thinking level or an explicit
id, checks provider availability, and routes each query either to a
deep-research client or to the generic chat path. Query-time failures come
back as failed ``ModelResponse`` values; only configuration problems raise.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from quorum.catalog import MODELS, get_model, models_for_level, usage_cost
from quorum.chat import ChatError, ChatProvider, chat_registry
from quorum.checkpoint import CheckpointStore, FileCheckpointStore
from quorum.config import Settings, provider_env_var
from quorum.log import LogContext
from quorum.recovery import JobRecovery
from quorum.research import ResearchClient, build_research_prompt, categorize, research_client_registry
from quorum.research.poll import ProgressCallback
from quorum.types import (
    Citation,
    ConfigurationError,
    ErrorCategory,
    Model,
    ModelResponse,
    ThinkingLevel,
    Usage,
)

_log = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


class Orchestrator:
    """Entry point for single-model questions and explicit comparisons.

    Collaborators are built from *settings* unless injected. Nothing is
    shared at module level: two orchestrators never share clients.

    Args:
        settings: Credentials and lifecycle tuning. Defaults to ``Settings.from_env()``.
        checkpoints: Checkpoint store for research jobs.
        research_clients: Provider name -> research client.
        chat_providers: Provider name -> chat provider.
        is_available: Provider availability predicate.
        models: Model catalog to resolve ids against.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        checkpoints: CheckpointStore | None = None,
        research_clients: dict[str, ResearchClient] | None = None,
        chat_providers: dict[str, ChatProvider] | None = None,
        is_available: Callable[[str], bool] | None = None,
        models: Sequence[Model] | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.checkpoints = checkpoints or FileCheckpointStore(self.settings.checkpoint_dir)
        self._is_available = is_available or self.settings.is_available
        self.models = list(MODELS if models is None else models)
        self.research_clients = (
            research_clients if research_clients is not None else self._build_research_clients()
        )
        self.chat_providers = chat_providers if chat_providers is not None else self._build_chat_providers()

    def _build_research_clients(self) -> dict[str, ResearchClient]:
        clients: dict[str, ResearchClient] = {}
        for provider in research_client_registry.list_all():
            if not self._is_available(provider):
                continue
            config = self.settings.provider_config(provider)  # type: ignore[arg-type]
            cls = research_client_registry.get(provider)
            clients[provider] = cls(
                config.api_key,
                self.checkpoints,
                max_retries=config.max_retries,
                timeout=config.timeout,
                poll_interval=self.settings.poll_interval,
                max_poll_attempts=self.settings.max_poll_attempts,
                first_event_timeout=self.settings.first_event_timeout,
            )
        _log.debug("research clients: %s", sorted(clients))
        return clients

    def _build_chat_providers(self) -> dict[str, ChatProvider]:
        providers: dict[str, ChatProvider] = {}
        for provider in chat_registry.list_all():
            if self._is_available(provider):
                config = self.settings.provider_config(provider)  # type: ignore[arg-type]
                providers[provider] = chat_registry.get(provider)(config)
        _log.debug("chat providers: %s", sorted(providers))
        return providers

    # -- model resolution ------------------------------------------------------

    def is_available(self, provider: str) -> bool:
        return self._is_available(provider)

    def available_models(self) -> list[Model]:
        """Catalog models whose provider has credentials configured."""
        return [m for m in self.models if self._is_available(m.provider)]

    def get_model(self, id_or_name: str) -> Model:
        """Look up a model by id or display name.

        Raises:
            ConfigurationError: If the model is unknown.
        """
        model = get_model(id_or_name, self.models)
        if model is None:
            raise ConfigurationError(f"Unknown model: {id_or_name}")
        return model

    def resolve_model(self, level: ThinkingLevel = "standard", override: str | None = None) -> Model:
        """Pick the model for a query before any network call.

        Raises:
            ConfigurationError: Unknown override, or no available model for *level*.
        """
        if override:
            return self.get_model(override)
        picked = models_for_level(level, self.available_models())
        if picked:
            return picked[0]
        raise ConfigurationError(f"No available models for level: {level}")

    def routes_to_research(self, model: Model) -> bool:
        """Whether *model* is served by a deep-research client rather than chat."""
        return model.is_deep_research and model.provider in self.research_clients

    # -- queries ---------------------------------------------------------------

    async def query_model(
        self,
        question: str,
        model: Model,
        *,
        stream: bool = False,
        on_token: TokenCallback | None = None,
        system_prompt: str | None = None,
        cancel: asyncio.Event | None = None,
        context: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ModelResponse:
        """Query one model, returning a failed response instead of raising.

        Args:
            question: The question, or the research topic for deep-research models.
            model: Target model.
            stream: Deliver output incrementally through *on_token*.
            on_token: Callback receiving each text increment.
            system_prompt: System instruction for chat models.
            cancel: When set, abandons a chat query with ``CANCELLED``.
            context: Background context for research prompts.
            on_progress: Poll-loop liveness callback for research jobs.
        """
        started = time.monotonic()
        if not self._is_available(model.provider):
            return ModelResponse.failure(
                model,
                ErrorCategory.PROVIDER_UNAVAILABLE,
                f"Provider {model.provider} not available ({provider_env_var(model.provider)} not set)",
            )
        with LogContext(model=model.model_id):
            try:
                if self.routes_to_research(model):
                    return await self.research_clients[model.provider].query(
                        question,
                        model,
                        stream=stream,
                        on_token=on_token,
                        context=context,
                        on_progress=on_progress,
                    )
                return await self._chat(question, model, stream, on_token, system_prompt, cancel, started)
            except Exception as exc:
                _log.error("query failed unexpectedly: model=%s", model.model_id, exc_info=True)
                err = categorize(exc, provider=model.provider)
                return ModelResponse.failure(
                    model, err.category, err.message, duration_ms=_elapsed_ms(started)
                )

    async def _chat(
        self,
        question: str,
        model: Model,
        stream: bool,
        on_token: TokenCallback | None,
        system_prompt: str | None,
        cancel: asyncio.Event | None,
        started: float,
    ) -> ModelResponse:
        provider = self.chat_providers.get(model.provider)
        if provider is None:
            return ModelResponse.failure(
                model, ErrorCategory.PROVIDER_UNAVAILABLE, f"No chat client configured for {model.provider}"
            )
        parts: list[str] = []
        usage: Usage | None = None
        citations: list[Citation] = []
        reasoning: str | None = None

        async def consume() -> None:
            nonlocal usage, citations, reasoning
            if not stream:
                result = await provider.complete(question, model.model_id, system_prompt=system_prompt)
                parts.append(result.content)
                usage, citations, reasoning = result.usage, list(result.citations), result.reasoning
                if on_token is not None and result.content:
                    on_token(result.content)
                return
            async for chunk in provider.stream(question, model.model_id, system_prompt=system_prompt):
                if chunk.delta:
                    parts.append(chunk.delta)
                    if on_token is not None:
                        on_token(chunk.delta)
                usage = chunk.usage or usage
                citations = citations or list(chunk.citations)

        try:
            cancelled = await _until_cancelled(consume(), cancel)
        except ChatError as exc:
            err = categorize(exc, provider=model.provider, partial_content="".join(parts))
            _log.warning("chat query failed: model=%s, category=%s", model.model_id, err.category)
            return ModelResponse.failure(
                model,
                err.category,
                err.message,
                partial_content=err.partial_content,
                duration_ms=_elapsed_ms(started),
            )
        if cancelled:
            _log.info("chat query cancelled: model=%s", model.model_id)
            return ModelResponse.failure(
                model,
                ErrorCategory.CANCELLED,
                "Query cancelled",
                partial_content="".join(parts),
                duration_ms=_elapsed_ms(started),
            )
        return ModelResponse.success(
            model,
            "".join(parts),
            usage=usage_cost(model, usage),
            duration_ms=_elapsed_ms(started),
            reasoning=reasoning,
            citations=citations,
        )

    async def ask(
        self,
        question: str,
        level: ThinkingLevel = "standard",
        *,
        stream: bool = False,
        on_token: TokenCallback | None = None,
        model_override: str | None = None,
    ) -> ModelResponse:
        """Ask one question at a thinking level.

        Raises:
            ConfigurationError: If no model can be resolved.
        """
        model = self.resolve_model(level, model_override)
        return await self.query_model(question, model, stream=stream, on_token=on_token)

    def resolve_research_model(self, override: str | None = None) -> Model:
        """Prefer an available deep-research model, else a high-tier one.

        Raises:
            ConfigurationError: If nothing suitable is available.
        """
        if override:
            return self.get_model(override)
        available = self.available_models()
        deep = [m for m in available if m.is_deep_research]
        strong = [m for m in available if not m.is_deep_research and m.cost_tier == "high"]
        if deep:
            return deep[0]
        if strong:
            _log.warning("no deep-research model available; falling back to %s", strong[0].model_id)
            return strong[0]
        raise ConfigurationError("No deep research or high-tier models available")

    async def research(
        self,
        topic: str,
        *,
        stream: bool = False,
        on_token: TokenCallback | None = None,
        model_override: str | None = None,
        context: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ModelResponse:
        """Research *topic* with the best available research-capable model."""
        model = self.resolve_research_model(model_override)
        question = topic if self.routes_to_research(model) else build_research_prompt(topic, context)
        return await self.query_model(
            question, model, stream=stream, on_token=on_token, context=context, on_progress=on_progress
        )

    async def compare(
        self,
        question: str,
        model_ids: Sequence[str],
        *,
        stream: bool = False,
        on_token: Callable[[Model, str], None] | None = None,
    ) -> list[ModelResponse]:
        """Ask every model in *model_ids* concurrently.

        Returns:
            Exactly one response per id, in input order.

        Raises:
            ConfigurationError: If any id is unknown; raised before any query starts.
        """
        models = [self.get_model(model_id) for model_id in model_ids]

        def token_sink(model: Model) -> TokenCallback | None:
            if on_token is None:
                return None
            return lambda text: on_token(model, text)

        return list(
            await asyncio.gather(
                *(
                    self.query_model(question, model, stream=stream, on_token=token_sink(model))
                    for model in models
                )
            )
        )

    def recovery(self) -> JobRecovery:
        """Recovery helpers bound to this orchestrator's checkpoints and clients."""
        return JobRecovery(self.checkpoints, self.research_clients, self.models)

    async def aclose(self) -> None:
        """Close every client this orchestrator owns."""
        clients: list[Any] = [*self.research_clients.values(), *self.chat_providers.values()]
        await asyncio.gather(*(client.aclose() for client in clients))

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def _until_cancelled(work: Awaitable[None], cancel: asyncio.Event | None) -> bool:
    """Run *work* unless *cancel* fires first; return ``True`` if cancelled."""
    if cancel is None:
        await work
        return False
    task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if task in done:
        task.result()
        return False
    task.cancel()
    await asyncio.wait({task})
    return True
