"""Tests for quorum.config and quorum.registry."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from quorum.config import PROVIDER_ENV_VARS, ProviderConfig, Settings, provider_env_var
from quorum.registry import Registry, RegistryError
from quorum.types import ConfigurationError, QuorumError

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestProviderEnvVar:
    def test_known_providers(self) -> None:
        assert provider_env_var("openai") == "OPENAI_API_KEY"
        assert provider_env_var("google") == "GOOGLE_GENERATIVE_AI_API_KEY"
        assert provider_env_var("perplexity") == "PERPLEXITY_API_KEY"

    def test_unknown_provider_falls_back(self) -> None:
        assert provider_env_var("mistral") == "MISTRAL_API_KEY"

    def test_all_five_providers(self) -> None:
        assert set(PROVIDER_ENV_VARS) == {"openai", "anthropic", "google", "xai", "perplexity"}


class TestSettingsFromEnv:
    def test_reads_keys(self) -> None:
        settings = Settings.from_env({"OPENAI_API_KEY": "sk-1", "XAI_API_KEY": "xai-1"})
        assert settings.api_keys == {"openai": "sk-1", "xai": "xai-1"}

    def test_empty_key_is_missing(self) -> None:
        settings = Settings.from_env({"OPENAI_API_KEY": ""})
        assert settings.is_available("openai") is False

    def test_available_providers_in_declared_order(self) -> None:
        settings = Settings.from_env({"XAI_API_KEY": "x", "ANTHROPIC_API_KEY": "a"})
        assert settings.available_providers() == ["anthropic", "xai"]

    def test_checkpoint_dir_from_env(self, tmp_path: Path) -> None:
        settings = Settings.from_env({"QUORUM_CHECKPOINT_DIR": str(tmp_path)})
        assert settings.checkpoint_dir == tmp_path

    def test_overrides(self) -> None:
        settings = Settings.from_env({}, poll_interval=0.5, max_poll_attempts=3)
        assert settings.poll_interval == 0.5
        assert settings.max_poll_attempts == 3

    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.poll_interval == 10.0
        assert settings.max_poll_attempts == 120
        assert settings.checkpoint_dir.name == "checkpoints"

    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValidationError):
            Settings(poll_interval=0)


class TestProviderConfig:
    def test_builds_config(self) -> None:
        settings = Settings(api_keys={"anthropic": "k"}, request_timeout=30.0, max_retries=1)
        config = settings.provider_config("anthropic")
        assert isinstance(config, ProviderConfig)
        assert config.api_key == "k"
        assert config.timeout == 30.0
        assert config.max_retries == 1

    def test_missing_key_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="GOOGLE_GENERATIVE_AI_API_KEY not set"):
            Settings().provider_config("google")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_inherits_quorum_error(self) -> None:
        assert issubclass(RegistryError, QuorumError)

    def test_register_and_get(self) -> None:
        reg: Registry[int] = Registry("test")
        reg.register("x", 42)
        assert reg.get("x") == 42
        assert "x" in reg

    def test_decorator_form(self) -> None:
        reg: Registry[type] = Registry("test")

        @reg.register("thing")
        class Thing:
            pass

        assert reg.get("thing") is Thing

    def test_duplicate_raises(self) -> None:
        reg: Registry[int] = Registry("test")
        reg.register("x", 1)
        with pytest.raises(RegistryError, match="already registered"):
            reg.register("x", 2)

    def test_get_unknown_lists_available(self) -> None:
        reg: Registry[int] = Registry("nums")
        reg.register("a", 1)
        with pytest.raises(RegistryError, match=r"'b' not found in nums \(available: \['a'\]\)"):
            reg.get("b")

    def test_find_returns_none(self) -> None:
        reg: Registry[int] = Registry("test")
        assert reg.find("missing") is None

    def test_list_all_insertion_order(self) -> None:
        reg: Registry[int] = Registry("test")
        reg.register("c", 3)
        reg.register("a", 1)
        assert reg.list_all() == ["c", "a"]
