"""Integration tests for the refinement orchestrator.

Uses a scripted adapter in place of a real backend to drive the cycle:
1. Valid output on the first attempt -> ACCEPTED, persisted, accounted
2. Invalid output -> RETRYING with a lower temperature -> ACCEPTED
3. Invalid output three times -> EXHAUSTED with the remediation message
4. Transport failure -> cycle fails, nothing retried
"""

from __future__ import annotations

import asyncio

import pytest

from uiforge.analytics.tokens import TokenEstimator
from uiforge.catalog import ModelCatalog, ModelInfo
from uiforge.config import RefinementConfig
from uiforge.core.orchestrator import ACCEPTED_MESSAGE, RefinementOrchestrator
from uiforge.core.prompts import REMEDIATION_MESSAGE
from uiforge.errors import LineageBusy, RequestRejected, TransportFailure
from uiforge.health import ProviderAvailability
from uiforge.llm.buffering import PassThroughPolicy
from uiforge.llm.router import ProviderRouter
from uiforge.store import ArtifactStore
from uiforge.types import EventType, RefinementState, attempt_temperature

VALID = "export default function App() {\n  return <div>Hello</div>;\n}"
VALID_BLUE = 'export default function App() {\n  return <div className="text-blue-500">Hello</div>;\n}'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ScriptedAdapter:
    """Replays one scripted output per stream call."""

    name = "openai"

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.requests = []

    async def stream(self, request):
        self.requests.append(request)
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        if isinstance(output, str):
            output = [output]
        for piece in output:
            yield piece

    def flush_policy(self):
        return PassThroughPolicy()

    async def close(self):
        pass

    @property
    def temperatures(self):
        return [r.settings.temperature for r in self.requests]

    def user_prompt(self, index: int) -> str:
        return self.requests[index].conversation[-1].content


class GatedAdapter(ScriptedAdapter):
    """Holds the stream open until the gate is set."""

    def __init__(self, outputs):
        super().__init__(outputs)
        self.gate = asyncio.Event()

    async def stream(self, request):
        await self.gate.wait()
        async for piece in super().stream(request):
            yield piece


def _orchestrator(adapter, store=None, catalog=None, availability=None, estimator=None,
                  provider="openai"):
    router = ProviderRouter(
        catalog or ModelCatalog(), {provider: adapter}, availability=availability,
    )
    return RefinementOrchestrator(
        router,
        store=store,
        estimator=estimator or TokenEstimator(encoder=str.split),
        config=RefinementConfig(retry_delay=0),
    )


def _event_types(orch):
    return [e.type for e in orch.event_bus.events()]


@pytest.fixture
def store():
    s = ArtifactStore(":memory:")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class TestGenerate:
    async def test_accepted_first_attempt(self, store):
        adapter = ScriptedAdapter([["```tsx\n", "function App() {\n", "  return <div>Hello</div>;\n}", "\n```"]])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")

        outcome = await orch.generate(session)

        assert outcome.accepted
        assert outcome.code == VALID
        assert outcome.artifact_id == session.artifact_id
        assert len(outcome.attempts) == 1
        assert adapter.temperatures == [0.7]
        assert session.state == RefinementState.ACCEPTED
        assert session.attempt == 0
        assert session.last_error is None
        assert not session.in_flight

        rec = store.get_artifact(outcome.artifact_id)
        assert rec.code == VALID
        assert rec.prompt == "a hello page"

    async def test_system_prompt_and_user_prompt_sent(self):
        adapter = ScriptedAdapter([VALID])
        orch = _orchestrator(adapter)
        await orch.generate(orch.start_session("a hello page", "gpt-4o"))

        request = adapter.requests[0]
        assert "export default" in request.system_text
        assert adapter.user_prompt(0) == "a hello page"

    async def test_analytics_recorded(self, store):
        adapter = ScriptedAdapter([VALID])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")

        outcome = await orch.generate(session)

        assert outcome.analytics.prompt_tokens == 3
        assert outcome.analytics.response_tokens == len(VALID.split())
        assert outcome.cumulative.generations == 1
        assert store.get_analytics(outcome.artifact_id) == outcome.analytics
        assert store.get_cumulative(outcome.artifact_id) == outcome.cumulative
        assert EventType.ANALYTICS_UPDATED in _event_types(orch)

    async def test_fragments_are_normalized_and_growing(self):
        adapter = ScriptedAdapter([["```tsx\nfunction App() {", "\n  return <div>Hello</div>;\n}", "\n```"]])
        orch = _orchestrator(adapter)
        await orch.generate(orch.start_session("a hello page", "gpt-4o"))

        fragments = [e.data["code"] for e in orch.event_bus.events(EventType.STREAM_FRAGMENT)]
        assert len(fragments) == 3
        assert all("```" not in f for f in fragments)
        assert fragments[0] == "export default function App() {"
        assert fragments[-1] == VALID

    async def test_without_store_still_gets_an_id(self):
        orch = _orchestrator(ScriptedAdapter([VALID]))
        outcome = await orch.generate(orch.start_session("x", "gpt-4o"))
        assert outcome.artifact_id

    async def test_brand_new_generation_resets_lineage(self, store):
        adapter = ScriptedAdapter([VALID, VALID])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")

        first = await orch.generate(session)
        second = await orch.generate(session)

        assert second.artifact_id != first.artifact_id
        assert second.cumulative.generations == 1


# ---------------------------------------------------------------------------
# Retry behavior
# ---------------------------------------------------------------------------

class TestRetry:
    async def test_invalid_then_valid(self, store):
        adapter = ScriptedAdapter(["<div>Hello</div>", VALID])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")

        outcome = await orch.generate(session)

        assert outcome.accepted
        assert len(adapter.requests) == 2
        assert adapter.temperatures == pytest.approx([0.7, 0.6])
        retry_prompt = adapter.user_prompt(1)
        assert "Please fix the following issue: Invalid component structure" in retry_prompt
        assert "Current Error Details:" in retry_prompt
        assert "Original Requirements:\na hello page" in retry_prompt
        assert outcome.attempts[1].error_context.startswith("Current Error Details:")

        types = _event_types(orch)
        assert types.count(EventType.VALIDATION_FAILED) == 1
        assert types.count(EventType.RETRY_SCHEDULED) == 1
        assert types.index(EventType.RETRY_SCHEDULED) < types.index(EventType.ARTIFACT_ACCEPTED)

    async def test_exhausted_after_three_attempts(self, store):
        adapter = ScriptedAdapter(["function App() {", "function App() {", "function App() {", VALID])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")

        outcome = await orch.generate(session)

        assert outcome.status == "exhausted"
        assert not outcome.accepted
        assert outcome.message == REMEDIATION_MESSAGE
        assert len(adapter.requests) == 3
        assert adapter.temperatures == pytest.approx([0.7, 0.6, 0.5])
        assert session.state == RefinementState.EXHAUSTED
        assert session.attempt == 0
        assert session.last_error is None
        assert store.list_artifacts() == []
        assert _event_types(orch)[-1] == EventType.CYCLE_EXHAUSTED

    async def test_temperature_never_below_floor(self):
        adapter = ScriptedAdapter(["", "", ""])
        orch = _orchestrator(adapter)
        session = orch.start_session("x", "gpt-4o")
        session.settings = session.settings.with_temperature(0.2)

        await orch.generate(session)

        assert adapter.temperatures == pytest.approx([0.2, 0.1, 0.1])

    async def test_first_attempt_uses_zero_base_temperature(self):
        adapter = ScriptedAdapter(["", "", ""])
        orch = _orchestrator(adapter, provider="deepseek")
        session = orch.start_session("a page", "deepseek-chat")
        assert session.settings.temperature == 0.0

        await orch.generate(session)

        assert adapter.temperatures == pytest.approx([0.0, 0.1, 0.1])

    @pytest.mark.parametrize("base, index, expected", [
        (0.7, 0, 0.7),
        (0.7, 2, 0.5),
        (0.0, 0, 0.0),
        (0.0, 1, 0.1),
        (0.15, 1, 0.1),
    ])
    def test_attempt_temperature(self, base, index, expected):
        assert attempt_temperature(base, index) == pytest.approx(expected)

    async def test_empty_retry_keeps_accepted_code_as_context(self, store):
        adapter = ScriptedAdapter([VALID, "", VALID_BLUE])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")
        await orch.generate(session)

        outcome = await orch.refine(session, "make it blue")

        assert outcome.accepted
        assert "Empty code response" in adapter.user_prompt(2)
        assert f"Current Complete Code:\n{VALID}" in adapter.user_prompt(2)


# ---------------------------------------------------------------------------
# Refinement and fixing
# ---------------------------------------------------------------------------

class TestRefine:
    async def test_requires_accepted_artifact(self):
        orch = _orchestrator(ScriptedAdapter([]))
        session = orch.start_session("x", "gpt-4o")
        with pytest.raises(RequestRejected, match="No accepted artifact"):
            await orch.refine(session, "make it blue")

    async def test_refine_updates_same_lineage(self, store):
        adapter = ScriptedAdapter([VALID, VALID_BLUE])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")
        first = await orch.generate(session)

        outcome = await orch.refine(session, "make it blue")

        assert outcome.accepted
        assert outcome.artifact_id == first.artifact_id
        assert store.get_artifact(first.artifact_id).code == VALID_BLUE
        assert outcome.cumulative.generations == 2
        assert outcome.cumulative.total_tokens == (
            first.analytics.total_tokens + outcome.analytics.total_tokens
        )
        prompt = adapter.user_prompt(1)
        assert "User Request:\nmake it blue" in prompt
        assert f"Current Complete Code:\n{VALID}" in prompt

    async def test_refine_with_reported_error(self):
        adapter = ScriptedAdapter([VALID, VALID_BLUE])
        orch = _orchestrator(adapter)
        session = orch.start_session("a hello page", "gpt-4o")
        await orch.generate(session)

        await orch.refine(session, "it crashes", error="ReferenceError: useState is not defined")

        prompt = adapter.user_prompt(1)
        assert "Current Error Details:" in prompt
        assert "Make sure every required import is present" in prompt
        assert session.last_error is None

    async def test_fix_sends_location(self, store):
        adapter = ScriptedAdapter([VALID, VALID_BLUE])
        orch = _orchestrator(adapter, store)
        session = orch.start_session("a hello page", "gpt-4o")
        await orch.generate(session)

        outcome = await orch.fix(session, "TypeError: x is undefined", line=3, column=9)

        assert outcome.accepted
        prompt = adapter.user_prompt(1)
        assert "- Message: TypeError: x is undefined" in prompt
        assert "- Line: 3" in prompt
        assert "- Column: 9" in prompt

    async def test_resume_session_from_store(self, store):
        adapter = ScriptedAdapter([VALID, VALID_BLUE])
        orch = _orchestrator(adapter, store)
        first = await orch.generate(orch.start_session("a hello page", "gpt-4o"))

        resumed = orch.resume_session(first.artifact_id)
        assert resumed.code == VALID
        assert resumed.cumulative.generations == 1

        outcome = await orch.refine(resumed, "make it blue")
        assert outcome.cumulative.generations == 2

    def test_resume_unknown_artifact(self, store):
        orch = _orchestrator(ScriptedAdapter([]), store)
        with pytest.raises(RequestRejected, match="Unknown artifact"):
            orch.resume_session("missing")


class TestConversation:
    async def test_generate_then_refine(self):
        adapter = ScriptedAdapter([VALID, VALID_BLUE])
        orch = _orchestrator(adapter)
        session = orch.start_session("a hello page", "gpt-4o")

        await orch.generate(session)
        await orch.refine(session, "make it blue")

        assert [(m.role, m.content) for m in session.history] == [
            ("user", "a hello page"),
            ("assistant", ACCEPTED_MESSAGE),
            ("user", "make it blue"),
            ("assistant", ACCEPTED_MESSAGE),
        ]

    async def test_retry_request_recorded(self):
        adapter = ScriptedAdapter(["<div>Hello</div>", VALID])
        orch = _orchestrator(adapter)
        session = orch.start_session("a hello page", "gpt-4o")

        await orch.generate(session)

        assert [m.role for m in session.history] == ["user", "user", "assistant"]
        assert session.history[1].content.startswith(
            "Please fix the following issue: Invalid component structure"
        )

    async def test_exhausted_ends_with_remediation(self):
        adapter = ScriptedAdapter(["", "", ""])
        orch = _orchestrator(adapter)
        session = orch.start_session("a hello page", "gpt-4o")

        await orch.generate(session)

        assert session.history[-1].role == "assistant"
        assert session.history[-1].content == REMEDIATION_MESSAGE

    async def test_fix_and_new_generation(self):
        adapter = ScriptedAdapter([VALID, VALID_BLUE, VALID])
        orch = _orchestrator(adapter)
        session = orch.start_session("a hello page", "gpt-4o")
        await orch.generate(session)

        await orch.fix(session, "TypeError: x is undefined")
        assert session.history[-2].content == "Fix this error: TypeError: x is undefined"

        await orch.generate(session)
        assert [m.content for m in session.history] == ["a hello page", ACCEPTED_MESSAGE]


# ---------------------------------------------------------------------------
# Failures and rejections
# ---------------------------------------------------------------------------

class TestFailures:
    async def test_transport_failure_not_retried(self):
        adapter = ScriptedAdapter([TransportFailure("HTTP 500", provider="openai", status_code=500), VALID])
        orch = _orchestrator(adapter)
        session = orch.start_session("x", "gpt-4o")

        with pytest.raises(TransportFailure):
            await orch.generate(session)

        assert len(adapter.requests) == 1
        assert session.state == RefinementState.IDLE
        assert not session.in_flight
        assert _event_types(orch)[-1] == EventType.CYCLE_FAILED

    def test_unknown_model(self):
        orch = _orchestrator(ScriptedAdapter([]))
        with pytest.raises(RequestRejected, match="Invalid model selected"):
            orch.start_session("x", "gpt-17")

    def test_empty_prompt(self):
        orch = _orchestrator(ScriptedAdapter([]))
        with pytest.raises(RequestRejected):
            orch.start_session("   ", "gpt-4o")

    async def test_disabled_provider_rejected_before_streaming(self):
        adapter = ScriptedAdapter([VALID])
        orch = _orchestrator(adapter, availability=lambda: ProviderAvailability())
        session = orch.start_session("x", "gpt-4o")

        with pytest.raises(RequestRejected):
            await orch.generate(session)
        assert adapter.requests == []

    async def test_concurrent_cycle_rejected(self):
        adapter = GatedAdapter([VALID])
        orch = _orchestrator(adapter)
        session = orch.start_session("x", "gpt-4o")

        task = asyncio.create_task(orch.generate(session))
        while not session.in_flight:
            await asyncio.sleep(0)

        with pytest.raises(LineageBusy):
            await orch.generate(session)

        adapter.gate.set()
        outcome = await task
        assert outcome.accepted
        assert outcome.code == VALID

    async def test_analytics_failure_is_not_fatal(self, store):
        catalog = ModelCatalog()
        catalog.add(ModelInfo("broken", "Broken", "openai", 0))
        orch = _orchestrator(ScriptedAdapter([VALID]), store, catalog=catalog)
        session = orch.start_session("x", "broken")

        outcome = await orch.generate(session)

        assert outcome.accepted
        assert outcome.analytics is None
        assert store.get_artifact(outcome.artifact_id).code == VALID
        assert EventType.ANALYTICS_FAILED in _event_types(orch)

    async def test_tokenizer_error_on_special_marker_is_not_fatal(self, store):
        def strict_encode(text):
            if "<|endoftext|>" in text:
                raise ValueError(
                    "Encountered text corresponding to disallowed special token '<|endoftext|>'"
                )
            return text.split()

        orch = _orchestrator(
            ScriptedAdapter([VALID]), store, estimator=TokenEstimator(encoder=strict_encode),
        )
        session = orch.start_session("explain the <|endoftext|> marker in a page", "gpt-4o")

        outcome = await orch.generate(session)

        assert outcome.accepted
        assert outcome.analytics is None
        assert session.state == RefinementState.ACCEPTED
        assert not session.in_flight
        assert store.get_artifact(outcome.artifact_id).code == VALID
        failed = orch.event_bus.events(EventType.ANALYTICS_FAILED)
        assert "disallowed special token" in failed[0].data["error"]

    async def test_unexpected_error_resets_cycle(self):
        adapter = ScriptedAdapter([
            VALID,
            AttributeError("'NoneType' object has no attribute 'get'"),
            VALID_BLUE,
        ])
        orch = _orchestrator(adapter)
        session = orch.start_session("a hello page", "gpt-4o")
        await orch.generate(session)

        with pytest.raises(AttributeError):
            await orch.refine(session, "it crashes", error="ReferenceError: useState is not defined")

        assert session.state == RefinementState.IDLE
        assert session.last_error is None
        assert session.attempt == 0
        assert not session.in_flight
        failed = orch.event_bus.events()[-1]
        assert failed.type == EventType.CYCLE_FAILED
        assert failed.data["kind"] == "AttributeError"

        outcome = await orch.refine(session, "make it blue")
        assert outcome.accepted
        assert "Current Error Details:" not in adapter.user_prompt(2)


class TestIdea:
    async def test_generate_idea_trimmed(self):
        adapter = ScriptedAdapter([["  Build me a habit ", "tracker app that rewards streaks\n"]])
        orch = _orchestrator(adapter)

        idea = await orch.generate_idea("gpt-4o")

        assert idea == "Build me a habit tracker app that rewards streaks"
        assert adapter.requests[0].settings.temperature == 0.9
