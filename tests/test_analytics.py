"""Tests for token estimation and lineage accounting."""

import pytest

from uiforge.analytics.tokens import (
    TokenEstimator,
    compute_analytics,
    merge_cumulative,
    utilization,
)
from uiforge.catalog import ModelInfo
from uiforge.errors import AnalyticsFailure
from uiforge.types import CumulativeTokenAnalytics, TokenAnalytics


def _words(text: str) -> list[str]:
    return text.split()


@pytest.fixture
def estimator():
    return TokenEstimator(encoder=_words)


def _call(total: int, max_tokens: int = 100, model: str = "GPT-4o") -> TokenAnalytics:
    prompt = total // 3
    return TokenAnalytics(
        model_name=model,
        provider="openai",
        prompt_tokens=prompt,
        response_tokens=total - prompt,
        total_tokens=total,
        max_tokens=max_tokens,
        utilization_percentage=utilization(total, max_tokens),
    )


class TestEstimator:
    def test_openai_and_deepseek_exact(self, estimator):
        assert estimator.estimate("one two three", "openai") == 3
        assert estimator.estimate("one two three", "deepseek") == 3

    def test_anthropic_scaled_up(self, estimator):
        # 3 * 1.1 = 3.3 -> 4
        assert estimator.estimate("one two three", "anthropic") == 4

    def test_google_character_heuristic(self, estimator):
        assert estimator.estimate("abcdefgh", "google") == 2
        assert estimator.estimate("abcdefghi", "google") == 3

    def test_unknown_provider_and_empty_text(self, estimator):
        assert estimator.estimate("some text", "mistral") == 0
        assert estimator.estimate("", "openai") == 0

    def test_tokenizer_load_failure(self, monkeypatch):
        import tiktoken

        def boom(name):
            raise OSError("offline")

        monkeypatch.setattr(tiktoken, "get_encoding", boom)
        with pytest.raises(AnalyticsFailure, match="Tokenizer unavailable"):
            TokenEstimator().estimate("hello", "openai")

    def test_google_does_not_need_tokenizer(self, monkeypatch):
        import tiktoken

        def boom(name):
            raise AssertionError("tokenizer should not load")

        monkeypatch.setattr(tiktoken, "get_encoding", boom)
        assert TokenEstimator().estimate("abcd", "google") == 1

    def test_encoder_error_becomes_analytics_failure(self):
        def broken(text):
            raise ValueError("disallowed special token '<|endoftext|>'")

        with pytest.raises(AnalyticsFailure, match="Token counting failed"):
            TokenEstimator(encoder=broken).estimate("a <|endoftext|> b", "anthropic")

    def test_special_token_text_counted_as_plain_text(self, monkeypatch):
        import tiktoken

        class FakeEncoding:
            def encode(self, text, allowed_special=frozenset(), disallowed_special="all"):
                assert disallowed_special == ()
                return text.split()

        monkeypatch.setattr(tiktoken, "get_encoding", lambda name: FakeEncoding())
        estimator = TokenEstimator()

        assert estimator.estimate("explain the <|endoftext|> marker", "openai") == 3
        assert estimator.estimate("one two", "deepseek") == 2


class TestUtilization:
    def test_rounded_to_two_places(self):
        assert utilization(1, 3) == 33.33
        assert utilization(2, 3) == 66.67

    def test_invalid_ceiling(self):
        with pytest.raises(AnalyticsFailure):
            utilization(10, 0)


class TestComputeAnalytics:
    def test_single_call(self, estimator):
        model = ModelInfo("gpt-4o", "GPT-4o", "openai", 200)
        a = compute_analytics("make a todo app", "export default function App() {}", model, estimator)

        assert a.prompt_tokens == 4
        assert a.response_tokens == 5
        assert a.total_tokens == 9
        assert a.max_tokens == 200
        assert a.utilization_percentage == 4.5
        assert a.model_name == "GPT-4o"


class TestMergeCumulative:
    def test_first_call_starts_lineage(self):
        cum = merge_cumulative(None, _call(15))
        assert isinstance(cum, CumulativeTokenAnalytics)
        assert cum.total_tokens == 15
        assert cum.generations == 1

    def test_three_calls_accumulate(self):
        cum = None
        for total in (15, 25, 40):
            cum = merge_cumulative(cum, _call(total))

        assert cum.total_tokens == 80
        assert cum.prompt_tokens + cum.response_tokens == 80
        assert cum.utilization_percentage == 80.0
        assert cum.generations == 3

    def test_latest_ceiling_applies(self):
        cum = merge_cumulative(None, _call(50, max_tokens=100))
        cum = merge_cumulative(cum, _call(50, max_tokens=1000, model="Gemini"))

        assert cum.max_tokens == 1000
        assert cum.utilization_percentage == 10.0
        assert cum.model_name == "Gemini"

    def test_to_dict_includes_generations(self):
        data = merge_cumulative(None, _call(10)).to_dict()
        assert data["generations"] == 1
        assert data["total_tokens"] == 10

    def test_two_calls_with_shrinking_ceiling(self):
        first = TokenAnalytics(
            model_name="GPT-4o", provider="openai", prompt_tokens=10, response_tokens=20,
            total_tokens=30, max_tokens=100, utilization_percentage=utilization(30, 100),
        )
        second = TokenAnalytics(
            model_name="GPT-4o", provider="openai", prompt_tokens=5, response_tokens=5,
            total_tokens=10, max_tokens=50, utilization_percentage=utilization(10, 50),
        )

        cum = merge_cumulative(merge_cumulative(None, first), second)

        assert (cum.prompt_tokens, cum.response_tokens, cum.total_tokens) == (15, 25, 40)
        assert cum.max_tokens == 50
        assert cum.utilization_percentage == 80.0
