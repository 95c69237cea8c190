"""Configuration management for uiforge.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./uiforge.yaml``
  3. ``~/.config/uiforge/config.yaml``
  4. Built-in defaults

API keys left out of the file fall back to the usual environment
variables (``OPENAI_API_KEY`` and friends).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from uiforge.catalog import PROVIDERS, ModelCatalog, ModelInfo

_logger = logging.getLogger(__name__)

_API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

_DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com",
    "google": "https://generativelanguage.googleapis.com/v1beta",
    "deepseek": "https://api.deepseek.com",
}


class ProviderConfig(BaseModel):
    api_key: str = ""
    base_url: str = ""
    enabled: bool | None = None  # None = enabled iff a key is present
    timeout: float = 120.0


class ModelConfig(BaseModel):
    id: str
    name: str = ""
    provider: str
    max_tokens: int = 32768


class StorageConfig(BaseModel):
    db_path: str = "~/.uiforge/artifacts.db"


class RefinementConfig(BaseModel):
    max_attempts: int = Field(3, ge=1, le=3)  # initial attempt + 2 retries
    retry_delay: float = Field(1.0, ge=0)
    temperature_step: float = Field(0.1, gt=0)
    temperature_floor: float = Field(0.1, ge=0, le=2)


class HealthConfig(BaseModel):
    interval: float = 60.0
    timeout: float = 5.0


class ForgeConfig(BaseModel):
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    models: list[ModelConfig] = Field(default_factory=list)
    default_model: str = ""
    storage: StorageConfig = Field(default_factory=StorageConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    def provider(self, name: str) -> ProviderConfig:
        """Return the provider config with key and URL defaults filled in."""
        cfg = self.providers.get(name, ProviderConfig())
        api_key = cfg.api_key or os.environ.get(_API_KEY_ENV.get(name, ""), "")
        base_url = cfg.base_url or _DEFAULT_BASE_URLS.get(name, "")
        return cfg.model_copy(update={"api_key": api_key, "base_url": base_url})

    def configured_providers(self) -> set[str]:
        """Providers that should be offered at startup (before health checks)."""
        enabled: set[str] = set()
        for name in PROVIDERS:
            cfg = self.provider(name)
            if cfg.enabled is None:
                if cfg.api_key:
                    enabled.add(name)
            elif cfg.enabled:
                enabled.add(name)
        return enabled

    def build_catalog(self) -> ModelCatalog:
        """Built-in catalog extended with models declared in the config."""
        catalog = ModelCatalog()
        for m in self.models:
            catalog.add(ModelInfo(
                id=m.id, name=m.name or m.id,
                provider=m.provider, max_tokens=m.max_tokens,
            ))
        return catalog


CONFIG_FILENAME = "uiforge.yaml"


def load_config(
    config_path: str | Path | None = None,
) -> tuple[ForgeConfig, Path | None]:
    """Load configuration from a YAML file.

    Returns (config, resolved_path). *resolved_path* is ``None`` when no
    file was found and built-in defaults are used.
    """
    if config_path is None:
        for candidate in (
            Path.cwd() / CONFIG_FILENAME,
            Path.home() / ".config" / "uiforge" / "config.yaml",
        ):
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return ForgeConfig(), None

    resolved = Path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _logger.info("Loading config from %s", resolved)
    with open(resolved, encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}
    return ForgeConfig.model_validate(raw), resolved.resolve()
