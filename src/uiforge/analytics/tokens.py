"""Token usage estimation per provider family.

openai / deepseek
    Exact count with the ``cl100k_base`` tokenizer.
anthropic
    Exact count scaled by 1.1, rounded up, to approximate its tokenizer.
google
    Character length divided by 4, rounded up.
anything else
    0.

Cumulative utilization is measured against the *latest* call's ceiling,
even when earlier calls in the lineage used a model with a different one.
"""

from __future__ import annotations

import functools
import logging
import math
from typing import Callable, Sequence

from uiforge.catalog import ModelInfo
from uiforge.errors import AnalyticsFailure
from uiforge.types import CumulativeTokenAnalytics, TokenAnalytics

_logger = logging.getLogger(__name__)

ANTHROPIC_MULTIPLIER = 1.1
CHARS_PER_TOKEN = 4
ENCODING_NAME = "cl100k_base"

Encoder = Callable[[str], Sequence[int]]


class TokenEstimator:
    """Estimate token counts. The exact encoder is loaded on first use."""

    def __init__(self, encoder: Encoder | None = None) -> None:
        self._encoder = encoder

    def _encode(self, text: str) -> Sequence[int]:
        if self._encoder is None:
            try:
                import tiktoken

                encoding = tiktoken.get_encoding(ENCODING_NAME)
            except Exception as e:
                raise AnalyticsFailure(f"Tokenizer unavailable: {e}") from e
            # Special-token markers in user text are counted as plain text.
            self._encoder = functools.partial(encoding.encode, disallowed_special=())
        try:
            return self._encoder(text)
        except Exception as e:
            raise AnalyticsFailure(f"Token counting failed: {e}") from e

    def estimate(self, text: str, provider: str) -> int:
        if not text:
            return 0
        if provider in ("openai", "deepseek"):
            return len(self._encode(text))
        if provider == "anthropic":
            return math.ceil(len(self._encode(text)) * ANTHROPIC_MULTIPLIER)
        if provider == "google":
            return math.ceil(len(text) / CHARS_PER_TOKEN)
        return 0


def utilization(total_tokens: int, max_tokens: int) -> float:
    if max_tokens <= 0:
        raise AnalyticsFailure(f"Invalid token ceiling: {max_tokens}")
    return round(total_tokens / max_tokens * 100, 2)


def compute_analytics(
    prompt: str,
    response: str,
    model: ModelInfo,
    estimator: TokenEstimator,
) -> TokenAnalytics:
    """Token analytics for one generation call."""
    prompt_tokens = estimator.estimate(prompt, model.provider)
    response_tokens = estimator.estimate(response, model.provider)
    total = prompt_tokens + response_tokens
    return TokenAnalytics(
        model_name=model.name,
        provider=model.provider,
        prompt_tokens=prompt_tokens,
        response_tokens=response_tokens,
        total_tokens=total,
        max_tokens=model.max_tokens,
        utilization_percentage=utilization(total, model.max_tokens),
    )


def merge_cumulative(
    previous: CumulativeTokenAnalytics | None,
    current: TokenAnalytics,
) -> CumulativeTokenAnalytics:
    """Add *current* to the lineage totals in *previous*."""
    prompt = current.prompt_tokens
    response = current.response_tokens
    total = current.total_tokens
    generations = 1
    if previous is not None:
        prompt += previous.prompt_tokens
        response += previous.response_tokens
        total += previous.total_tokens
        generations += previous.generations
    return CumulativeTokenAnalytics(
        model_name=current.model_name,
        provider=current.provider,
        prompt_tokens=prompt,
        response_tokens=response,
        total_tokens=total,
        max_tokens=current.max_tokens,
        utilization_percentage=utilization(total, current.max_tokens),
        generations=generations,
    )
