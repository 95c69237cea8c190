"""Provider adapters, chunk buffering and routing for uiforge."""

from uiforge.llm.buffering import (
    FlushPolicy,
    PassThroughPolicy,
    SizeThresholdPolicy,
    TimeThresholdPolicy,
    buffered,
)
from uiforge.llm.providers import (
    ADAPTERS,
    AnthropicAdapter,
    DeepSeekAdapter,
    GoogleAdapter,
    OpenAIAdapter,
    ProviderAdapter,
)
from uiforge.llm.router import ProviderRouter

__all__ = [
    "ADAPTERS",
    "AnthropicAdapter",
    "DeepSeekAdapter",
    "FlushPolicy",
    "GoogleAdapter",
    "OpenAIAdapter",
    "PassThroughPolicy",
    "ProviderAdapter",
    "ProviderRouter",
    "SizeThresholdPolicy",
    "TimeThresholdPolicy",
    "buffered",
]
