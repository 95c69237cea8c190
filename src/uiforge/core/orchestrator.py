"""Refinement orchestrator: the submit -> stream -> validate -> retry loop.

    IDLE -> STREAMING -> VALIDATING -> ACCEPTED
                             |
                             +-> RETRYING -> STREAMING (after a delay)
                             +-> EXHAUSTED (after the last attempt)

The orchestrator owns the accumulation buffer of the generation in
flight. Viewers follow progress through the EventBus: every flushed
emission produces a ``STREAM_FRAGMENT`` event carrying the normalized
text accumulated so far, never raw backend output.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from uiforge.analytics.tokens import TokenEstimator, compute_analytics, merge_cumulative
from uiforge.catalog import ModelInfo, default_settings
from uiforge.config import RefinementConfig
from uiforge.core.error_context import build_error_context
from uiforge.core.normalizer import normalize
from uiforge.core.prompts import (
    IDEA_SYSTEM_PROMPT,
    IDEA_USER_PROMPT,
    REMEDIATION_MESSAGE,
    RETRY_REQUEST,
    SYSTEM_PROMPT,
    fix_prompt,
    refinement_prompt,
)
from uiforge.core.session import ArtifactSession
from uiforge.core.validator import validate
from uiforge.errors import AnalyticsFailure, ForgeError, RequestRejected
from uiforge.events.bus import EventBus
from uiforge.llm.buffering import PassThroughPolicy, buffered
from uiforge.llm.providers import ProviderAdapter
from uiforge.llm.router import ProviderRouter
from uiforge.store import ArtifactStore, new_artifact_id
from uiforge.types import (
    ChatMessage,
    EventType,
    ForgeEvent,
    GenerationRequest,
    GenerationSettings,
    RefinementAttempt,
    RefinementOutcome,
    RefinementState,
    ValidationResult,
    attempt_temperature,
)

_logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = (
    "I've updated the code successfully. Let me know if you need any other changes!"
)


class RefinementOrchestrator:
    """Drives generation and chat refinement cycles for artifact sessions.

    Parameters
    ----------
    router:
        Resolves models to provider adapters.
    store:
        Persistence for accepted artifacts and analytics (optional).
    event_bus:
        Progress events for viewers (optional).
    estimator:
        Token estimator (optional; defaults to the tiktoken-backed one).
    config:
        Retry bound, retry delay and temperature schedule.
    """

    def __init__(
        self,
        router: ProviderRouter,
        store: ArtifactStore | None = None,
        event_bus: EventBus | None = None,
        estimator: TokenEstimator | None = None,
        config: RefinementConfig | None = None,
    ) -> None:
        self._router = router
        self._store = store
        self._event_bus = event_bus or EventBus()
        self._estimator = estimator or TokenEstimator()
        self._config = config or RefinementConfig()

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_session(
        self,
        prompt: str,
        model: str,
        settings: GenerationSettings | None = None,
    ) -> ArtifactSession:
        """Create a new lineage for *prompt*. Rejects unknown models."""
        if not prompt.strip():
            raise RequestRejected("Prompt must not be empty")
        info = self._router.catalog.resolve(model)
        return ArtifactSession(
            prompt=prompt,
            model=info.id,
            settings=settings or default_settings(info.provider),
        )

    def resume_session(
        self,
        artifact_id: str,
        model: str | None = None,
    ) -> ArtifactSession:
        """Reopen a persisted lineage, optionally switching to *model*."""
        if self._store is None:
            raise RequestRejected("No artifact store configured")
        record = self._store.get_artifact(artifact_id)
        if record is None:
            raise RequestRejected(f"Unknown artifact: {artifact_id}")
        info = self._router.catalog.resolve(model or record.model)
        session = ArtifactSession.from_record(
            record,
            settings=default_settings(info.provider),
            cumulative=self._store.get_cumulative(artifact_id),
        )
        session.model = info.id
        return session

    async def generate(self, session: ArtifactSession) -> RefinementOutcome:
        """Run a brand-new generation cycle for *session*'s prompt."""
        if session.in_flight:
            session.acquire()  # raises LineageBusy
        session.artifact_id = None
        session.code = ""
        session.cumulative = None
        session.history = [ChatMessage("user", session.prompt)]
        session.reset_cycle()
        return await self._run_cycle(session, session.prompt, intent=session.prompt)

    async def refine(
        self,
        session: ArtifactSession,
        message: str,
        error: str | None = None,
    ) -> RefinementOutcome:
        """Run a chat refinement cycle on the accepted artifact.

        *error* is the last error the viewer reported for the artifact, if
        any; it is woven into the prompt as structured fix instructions.
        """
        self._require_artifact(session)
        if not message.strip():
            raise RequestRejected("Refinement message must not be empty")
        if session.in_flight:
            session.acquire()
        session.attempt = 0
        if error:
            session.last_error = error
        session.history.append(ChatMessage("user", message))
        prompt = refinement_prompt(message, session.code, session.prompt, session.last_error)
        return await self._run_cycle(session, prompt, intent=message)

    async def fix(
        self,
        session: ArtifactSession,
        error: str,
        line: int | None = None,
        column: int | None = None,
    ) -> RefinementOutcome:
        """Ask the model to fix a runtime error reported by the viewer."""
        self._require_artifact(session)
        if session.in_flight:
            session.acquire()
        session.attempt = 0
        session.last_error = error
        intent = f"Fix this error: {error}"
        session.history.append(ChatMessage("user", intent))
        prompt = fix_prompt(session.code, error, line, column)
        return await self._run_cycle(session, prompt, intent=intent)

    async def generate_idea(self, model: str) -> str:
        """Stream a one-line app idea from *model* and return it trimmed."""
        info, adapter = self._router.resolve(model)
        request = GenerationRequest(
            provider=info.provider,
            model=info.id,
            messages=(
                ChatMessage("system", IDEA_SYSTEM_PROMPT),
                ChatMessage("user", IDEA_USER_PROMPT),
            ),
            settings=GenerationSettings(temperature=0.9, max_tokens=1000),
        )
        parts: list[str] = []
        async for chunk in buffered(adapter.stream(request), PassThroughPolicy()):
            parts.append(chunk)
        return "".join(parts).strip()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run_cycle(
        self,
        session: ArtifactSession,
        prompt: str,
        intent: str,
    ) -> RefinementOutcome:
        session.acquire()
        try:
            info, adapter = self._router.resolve(session.model)
            await self._emit(EventType.CYCLE_STARTED, session, {"intent": intent[:200]})
            attempts: list[RefinementAttempt] = []

            while True:
                temperature = attempt_temperature(
                    session.settings.temperature,
                    session.attempt,
                    step=self._config.temperature_step,
                    floor=self._config.temperature_floor,
                )
                attempt = RefinementAttempt(
                    index=session.attempt,
                    temperature=temperature,
                    error_context=build_error_context(session.last_error),
                )
                attempts.append(attempt)
                request = GenerationRequest(
                    provider=info.provider,
                    model=info.id,
                    messages=(
                        ChatMessage("system", SYSTEM_PROMPT),
                        ChatMessage("user", prompt),
                    ),
                    settings=session.settings.with_temperature(temperature),
                )

                await self._transition(session, RefinementState.STREAMING)
                code = await self._stream(session, adapter, request, attempt)

                await self._transition(session, RefinementState.VALIDATING)
                result = validate(code)
                if result.is_valid:
                    return await self._accept(session, code, intent, info, attempts)

                await self._emit(EventType.VALIDATION_FAILED, session, {
                    "attempt": attempt.index,
                    "error_kind": result.error_kind.value if result.error_kind else None,
                    "error": result.error_message,
                })
                _logger.info(
                    "Attempt %d/%d produced invalid code: %s",
                    attempt.index + 1, self._config.max_attempts, result.error_message,
                )

                if session.attempt >= self._config.max_attempts - 1:
                    return await self._exhaust(session, attempts, result)

                prompt = await self._schedule_retry(session, code, intent, result)
        except ForgeError as e:
            _logger.warning("Cycle failed for %s: %s", session.model, e)
            await self._fail(session, e)
            raise
        except Exception as e:
            _logger.exception("Unexpected error in cycle for %s", session.model)
            await self._fail(session, e)
            raise
        finally:
            session.release()

    async def _fail(self, session: ArtifactSession, error: Exception) -> None:
        """Return an interrupted cycle to IDLE with no stale error."""
        session.reset_cycle()
        await self._transition(session, RefinementState.IDLE)
        await self._emit(EventType.CYCLE_FAILED, session, {
            "error": str(error), "kind": type(error).__name__,
        })

    async def _stream(
        self,
        session: ArtifactSession,
        adapter: ProviderAdapter,
        request: GenerationRequest,
        attempt: RefinementAttempt,
    ) -> str:
        """Consume one stream; return the normalized accumulated text."""
        await self._emit(EventType.STREAM_OPENED, session, {
            "attempt": attempt.index,
            "temperature": attempt.temperature,
            "provider": request.provider,
        })
        raw = ""
        async for chunk in buffered(adapter.stream(request), adapter.flush_policy()):
            raw += chunk
            await self._emit(EventType.STREAM_FRAGMENT, session, {
                "attempt": attempt.index,
                "code": normalize(raw),
            })
        return normalize(raw)

    async def _schedule_retry(
        self,
        session: ArtifactSession,
        code: str,
        intent: str,
        result: ValidationResult,
    ) -> str:
        """Enter RETRYING, wait, and return the prompt for the next attempt."""
        error = result.error_message or "Code validation failed"
        session.attempt += 1
        session.last_error = error
        await self._transition(session, RefinementState.RETRYING)
        next_temperature = attempt_temperature(
            session.settings.temperature,
            session.attempt,
            step=self._config.temperature_step,
            floor=self._config.temperature_floor,
        )
        await self._emit(EventType.RETRY_SCHEDULED, session, {
            "attempt": session.attempt,
            "error": error,
            "temperature": next_temperature,
            "delay": self._config.retry_delay,
        })
        await asyncio.sleep(self._config.retry_delay)

        retry_request = RETRY_REQUEST.format(error=error)
        session.history.append(ChatMessage("user", retry_request))
        return refinement_prompt(
            f"{intent}\n\n{retry_request}",
            code if code.strip() else session.code,
            session.prompt,
            session.last_error,
        )

    async def _accept(
        self,
        session: ArtifactSession,
        code: str,
        intent: str,
        info: ModelInfo,
        attempts: list[RefinementAttempt],
    ) -> RefinementOutcome:
        session.code = code
        if self._store is not None:
            session.artifact_id = self._store.save_artifact(
                prompt=session.prompt,
                model=session.model,
                code=code,
                artifact_id=session.artifact_id,
            )
        elif session.artifact_id is None:
            session.artifact_id = new_artifact_id()

        session.reset_cycle()
        session.history.append(ChatMessage("assistant", ACCEPTED_MESSAGE))
        await self._transition(session, RefinementState.ACCEPTED)
        await self._emit(EventType.ARTIFACT_ACCEPTED, session, {
            "attempts": len(attempts), "code_length": len(code),
        })

        analytics = await self._account(session, intent, code, info)
        return RefinementOutcome(
            status="accepted",
            code=code,
            artifact_id=session.artifact_id,
            analytics=analytics,
            cumulative=session.cumulative,
            attempts=attempts,
            message=ACCEPTED_MESSAGE,
        )

    async def _exhaust(
        self,
        session: ArtifactSession,
        attempts: list[RefinementAttempt],
        result: ValidationResult,
    ) -> RefinementOutcome:
        session.reset_cycle()
        session.history.append(ChatMessage("assistant", REMEDIATION_MESSAGE))
        await self._transition(session, RefinementState.EXHAUSTED)
        await self._emit(EventType.CYCLE_EXHAUSTED, session, {
            "attempts": len(attempts), "error": result.error_message,
        })
        return RefinementOutcome(
            status="exhausted",
            code=session.code,
            artifact_id=session.artifact_id,
            cumulative=session.cumulative,
            attempts=attempts,
            message=REMEDIATION_MESSAGE,
        )

    async def _account(
        self,
        session: ArtifactSession,
        prompt: str,
        code: str,
        info: ModelInfo,
    ):
        """Compute and merge analytics. Failures never affect the outcome."""
        try:
            analytics = compute_analytics(prompt, code, info, self._estimator)
        except AnalyticsFailure as e:
            _logger.warning("Token analytics failed: %s", e)
            await self._emit(EventType.ANALYTICS_FAILED, session, {"error": str(e)})
            return None

        session.cumulative = merge_cumulative(session.cumulative, analytics)
        if self._store is not None and session.artifact_id:
            try:
                self._store.upsert_analytics(session.artifact_id, analytics)
                self._store.upsert_analytics(session.artifact_id, session.cumulative)
            except Exception:
                _logger.exception("Failed to persist token analytics")
        await self._emit(EventType.ANALYTICS_UPDATED, session, {
            "analytics": analytics.to_dict(),
            "cumulative": session.cumulative.to_dict(),
        })
        return analytics

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_artifact(session: ArtifactSession) -> None:
        if not session.has_artifact:
            raise RequestRejected("No accepted artifact to refine; generate one first")

    async def _transition(self, session: ArtifactSession, state: RefinementState) -> None:
        previous = session.state
        session.state = state
        await self._emit(EventType.STATE_CHANGED, session, {
            "from": previous.value, "to": state.value,
        })

    async def _emit(
        self,
        event_type: EventType,
        session: ArtifactSession,
        data: dict[str, Any],
    ) -> None:
        payload = {"artifact_id": session.artifact_id, **data}
        await self._event_bus.emit(ForgeEvent(type=event_type, data=payload))
