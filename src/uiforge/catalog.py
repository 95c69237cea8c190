"""Model catalog: which models exist, who serves them, and their ceilings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from uiforge.errors import RequestRejected
from uiforge.types import GenerationSettings

PROVIDERS = ("openai", "anthropic", "google", "deepseek")


@dataclass(frozen=True)
class ModelInfo:
    """A selectable model and its context ceiling."""

    id: str
    name: str
    provider: str
    max_tokens: int


_BUILTIN: tuple[ModelInfo, ...] = (
    ModelInfo("gpt-4o", "GPT-4o", "openai", 128000),
    ModelInfo("gpt-4o-mini", "GPT-4o Mini", "openai", 64000),
    ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "anthropic", 200000),
    ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "anthropic", 200000),
    ModelInfo("claude-3-opus-20240229", "Claude 3 Opus", "anthropic", 200000),
    ModelInfo("claude-3-sonnet-20240229", "Claude 3 Sonnet", "anthropic", 200000),
    ModelInfo("claude-3-haiku-20240307", "Claude 3 Haiku", "anthropic", 200000),
    ModelInfo("gemini-2.0-flash-exp", "Gemini 2.0 Flash", "google", 1000000),
    ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash", "google", 1000000),
    ModelInfo("gemini-1.5-flash-8b", "Gemini 1.5 Flash-8B", "google", 1000000),
    ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", "google", 1000000),
    ModelInfo("deepseek-chat", "DeepSeek Chat", "deepseek", 32768),
    ModelInfo("deepseek-coder", "DeepSeek Coder", "deepseek", 32768),
)

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20241022",
    "google": "gemini-2.0-flash-exp",
    "deepseek": "deepseek-chat",
}

# Provider-level defaults applied when the caller gives no settings
_DEFAULT_MAX_TOKENS: dict[str, int] = {
    "anthropic": 200000,
    "openai": 64000,
    "google": 1000000,
    "deepseek": 32768,
}


def default_settings(provider: str) -> GenerationSettings:
    """Return the starting settings for *provider*."""
    return GenerationSettings(
        temperature=0.0 if provider == "deepseek" else 0.7,
        max_tokens=_DEFAULT_MAX_TOKENS.get(provider, 200000),
    )


class ModelCatalog:
    """Lookup table of known models, keyed by model id."""

    def __init__(self, models: Iterable[ModelInfo] = _BUILTIN) -> None:
        self._models: dict[str, ModelInfo] = {}
        for info in models:
            self.add(info)

    def add(self, info: ModelInfo) -> None:
        if info.provider not in PROVIDERS:
            raise ValueError(f"Unknown provider for model {info.id}: {info.provider}")
        self._models[info.id] = info

    def resolve(self, model_id: str) -> ModelInfo:
        """Return the ``ModelInfo`` for *model_id* or raise ``RequestRejected``."""
        info = self._models.get(model_id)
        if info is None:
            raise RequestRejected(f"Invalid model selected: {model_id}")
        return info

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def for_provider(self, provider: str) -> list[ModelInfo]:
        return [m for m in self._models.values() if m.provider == provider]

    def all(self) -> list[ModelInfo]:
        return list(self._models.values())

    def default_model(self, provider: str) -> str:
        if provider in DEFAULT_MODELS and DEFAULT_MODELS[provider] in self._models:
            return DEFAULT_MODELS[provider]
        models = self.for_provider(provider)
        if not models:
            raise RequestRejected(f"No models configured for provider: {provider}")
        return models[0].id
