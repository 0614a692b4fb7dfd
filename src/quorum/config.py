"""Configuration types for quorum.

Credentials are read from the environment once, into an immutable
``Settings`` value that is passed explicitly to the orchestrator and the
clients it builds.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

from quorum.types import ConfigurationError, Provider

PROVIDER_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_GENERATIVE_AI_API_KEY",
    "xai": "XAI_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
}
"""Environment variable holding each provider's secret."""

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "quorum"


def provider_env_var(provider: str) -> str:
    """Return the environment variable name for *provider*'s API key."""
    return PROVIDER_ENV_VARS.get(provider, f"{provider.upper()}_API_KEY")


class ProviderConfig(BaseModel):
    """Connection configuration for one provider client.

    Args:
        provider: Provider family name.
        api_key: Secret used for authentication.
        base_url: Custom API base URL.
        max_retries: SDK-level retries on transient failures.
        timeout: Request timeout in seconds.
    """

    model_config = {"frozen": True}

    provider: Provider
    api_key: str
    base_url: str | None = None
    max_retries: int = Field(default=2, ge=0)
    timeout: float = Field(default=600.0, gt=0)


class Settings(BaseModel):
    """Process-wide settings.

    Args:
        api_keys: Secret per configured provider; absent providers are
            unavailable.
        checkpoint_dir: Directory holding in-flight job checkpoints.
        poll_interval: Seconds between job status polls.
        max_poll_attempts: Poll attempts before giving up with ``timeout``.
        first_event_timeout: Seconds to wait for the first stream event.
        request_timeout: Per-request timeout for provider calls.
        max_retries: SDK-level retries for provider calls.
    """

    model_config = {"frozen": True}

    api_keys: dict[str, str] = Field(default_factory=dict)
    checkpoint_dir: Path = DEFAULT_CACHE_DIR / "checkpoints"
    poll_interval: float = Field(default=10.0, gt=0)
    max_poll_attempts: int = Field(default=120, ge=1)
    first_event_timeout: float = Field(default=120.0, gt=0)
    request_timeout: float = Field(default=600.0, gt=0)
    max_retries: int = Field(default=2, ge=0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> Settings:
        """Build settings from environment variables.

        Reads each provider's key from ``PROVIDER_ENV_VARS`` and the
        checkpoint directory from ``QUORUM_CHECKPOINT_DIR``.
        """
        env = os.environ if environ is None else environ
        keys = {
            provider: env[var] for provider, var in PROVIDER_ENV_VARS.items() if env.get(var)
        }
        values: dict[str, object] = {"api_keys": keys}
        if env.get("QUORUM_CHECKPOINT_DIR"):
            values["checkpoint_dir"] = Path(env["QUORUM_CHECKPOINT_DIR"]).expanduser()
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    def is_available(self, provider: str) -> bool:
        """Whether *provider* has a configured credential."""
        return bool(self.api_keys.get(provider))

    def available_providers(self) -> list[str]:
        return [p for p in PROVIDER_ENV_VARS if self.is_available(p)]

    def provider_config(self, provider: Provider, *, base_url: str | None = None) -> ProviderConfig:
        """Build the connection config for *provider*.

        Raises:
            ConfigurationError: If the provider has no credential.
        """
        api_key = self.api_keys.get(provider)
        if not api_key:
            raise ConfigurationError(
                f"Provider {provider} not available ({provider_env_var(provider)} not set)"
            )
        return ProviderConfig(
            provider=provider,
            api_key=api_key,
            base_url=base_url,
            max_retries=self.max_retries,
            timeout=self.request_timeout,
        )
