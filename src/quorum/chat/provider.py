"""Single-shot chat providers for non-research models.

``ChatProvider`` is the generic request/stream path used for every model
that is not routed to a deep-research client. One instance serves all models
of a provider family; the model id is passed per call.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from pydantic import BaseModel, Field

from quorum.config import ProviderConfig
from quorum.registry import Registry
from quorum.types import Citation, QuorumError, Usage

logger = logging.getLogger(__name__)


class ChatError(QuorumError):
    """Raised when a chat provider call fails.

    Args:
        message: Human-readable error description.
        model: Model id that caused the error.
        status_code: HTTP status, when the provider answered.
        code: Provider error code or status string.
        transport: ``True`` when the connection itself failed.
    """

    def __init__(
        self,
        message: str,
        *,
        model: str = "",
        status_code: int | None = None,
        code: str | None = None,
        transport: bool = False,
    ) -> None:
        self.model = model
        self.status_code = status_code
        self.code = code
        self.transport = transport
        full = f"[{model}] {message}" if model else message
        super().__init__(full)


class ChatResult(BaseModel):
    """Complete answer of a single-shot call.

    Args:
        content: Answer text.
        reasoning: Chain-of-thought text, for models that expose it.
        usage: Token usage.
        citations: Sources returned by search-backed models.
    """

    model_config = {"frozen": True}

    content: str = ""
    reasoning: str | None = None
    usage: Usage | None = None
    citations: list[Citation] = Field(default_factory=list)


class ChatChunk(BaseModel):
    """One increment of a streamed answer; usage usually arrives on the last chunk."""

    model_config = {"frozen": True}

    delta: str = ""
    usage: Usage | None = None
    citations: list[Citation] = Field(default_factory=list)


chat_registry: Registry[type[ChatProvider]] = Registry("chat_registry")
"""Provider family name -> ``ChatProvider`` subclass."""


class ChatProvider(ABC):
    """Abstract single-shot chat backend.

    Args:
        config: Provider connection configuration.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @abstractmethod
    async def complete(self, prompt: str, model_id: str, *, system_prompt: str | None = None) -> ChatResult:
        """Send *prompt* and return the full answer.

        Raises:
            ChatError: If the provider call fails.
        """

    @abstractmethod
    async def stream(
        self, prompt: str, model_id: str, *, system_prompt: str | None = None
    ) -> AsyncIterator[ChatChunk]:
        """Stream the answer to *prompt*.

        Yields:
            Incremental chunks.

        Raises:
            ChatError: If the provider call fails.
        """
        # Sentinel yield for async generator typing.
        yield  # type: ignore[misc]  # pragma: no cover

    async def aclose(self) -> None:
        """Release network resources."""


def get_chat_provider(config: ProviderConfig) -> ChatProvider:
    """Build the registered ``ChatProvider`` for ``config.provider``.

    Raises:
        RegistryError: If no chat provider is registered for the family.
    """
    cls = chat_registry.get(config.provider)
    logger.debug("Resolved chat provider '%s'", config.provider)
    return cls(config)
