"""Artifact lineage state owned by the refinement orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field

from uiforge.errors import LineageBusy
from uiforge.store import ArtifactRecord
from uiforge.types import (
    ChatMessage,
    CumulativeTokenAnalytics,
    GenerationSettings,
    RefinementState,
)


@dataclass
class ArtifactSession:
    """One artifact lineage: the original generation and its refinements.

    ``attempt`` and ``last_error`` belong to the current refinement cycle
    and are reset whenever a cycle ends. At most one generation may be in
    flight per session.
    """

    prompt: str
    model: str
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    artifact_id: str | None = None
    code: str = ""
    history: list[ChatMessage] = field(default_factory=list)
    last_error: str | None = None
    attempt: int = 0
    cumulative: CumulativeTokenAnalytics | None = None
    state: RefinementState = RefinementState.IDLE
    _in_flight: bool = field(default=False, repr=False)

    @classmethod
    def from_record(
        cls,
        record: ArtifactRecord,
        settings: GenerationSettings | None = None,
        cumulative: CumulativeTokenAnalytics | None = None,
    ) -> ArtifactSession:
        """Resume a lineage from a persisted artifact."""
        return cls(
            prompt=record.prompt,
            model=record.model,
            settings=settings or GenerationSettings(),
            artifact_id=record.id,
            code=record.code,
            cumulative=cumulative,
            state=RefinementState.ACCEPTED,
        )

    @property
    def has_artifact(self) -> bool:
        return self.artifact_id is not None and bool(self.code)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def acquire(self) -> None:
        if self._in_flight:
            raise LineageBusy(
                f"A generation is already running for artifact {self.artifact_id or '(new)'}"
            )
        self._in_flight = True

    def release(self) -> None:
        self._in_flight = False

    def reset_cycle(self) -> None:
        self.attempt = 0
        self.last_error = None
