"""Shared data types for uiforge."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field, replace
from typing import Any


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChatMessage:
    """A role-tagged message sent to a backend."""

    role: str  # system, user, assistant
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationSettings:
    """Sampling settings for one generation call."""

    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stream: bool = True

    def with_temperature(self, temperature: float) -> GenerationSettings:
        return replace(self, temperature=temperature)


@dataclass(frozen=True)
class GenerationRequest:
    """Everything an adapter needs to open one stream. Immutable once issued."""

    provider: str
    model: str
    messages: tuple[ChatMessage, ...]
    settings: GenerationSettings = field(default_factory=GenerationSettings)

    @property
    def system_text(self) -> str:
        """All system messages joined, for backends with a separate slot."""
        return "\n\n".join(m.content for m in self.messages if m.role == "system")

    @property
    def conversation(self) -> list[ChatMessage]:
        """Non-system messages in order."""
        return [m for m in self.messages if m.role != "system"]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ErrorKind(enum.Enum):
    """Structural validation failure kinds, in check order."""

    EMPTY_ARTIFACT = "EmptyArtifact"
    INVALID_COMPONENT_STRUCTURE = "InvalidComponentStructure"
    MISSING_DEFAULT_EXPORT = "MissingDefaultExport"
    MISMATCHED_OR_UNCLOSED_BRACKETS = "MismatchedOrUnclosedBrackets"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation pass. Derived, never persisted."""

    is_valid: bool
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> ValidationResult:
        return cls(is_valid=False, error_kind=kind, error_message=message)


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------

class RefinementState(enum.Enum):
    """States of the refinement state machine."""

    IDLE = "idle"
    STREAMING = "streaming"
    VALIDATING = "validating"
    RETRYING = "retrying"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


def attempt_temperature(
    base: float,
    index: int,
    step: float = 0.1,
    floor: float = 0.1,
) -> float:
    """Temperature for attempt *index*.

    The first attempt uses *base* unchanged. Retries use
    ``max(floor, base - step * index)``.
    """
    if index == 0:
        return base
    return max(floor, base - step * index)


@dataclass(frozen=True)
class RefinementAttempt:
    """One generation attempt inside a refinement cycle."""

    index: int
    temperature: float
    error_context: str = ""


@dataclass
class RefinementOutcome:
    """Terminal result of one refinement cycle."""

    status: str  # "accepted" | "exhausted"
    code: str = ""
    artifact_id: str | None = None
    analytics: TokenAnalytics | None = None
    cumulative: CumulativeTokenAnalytics | None = None
    attempts: list[RefinementAttempt] = field(default_factory=list)
    message: str = ""

    @property
    def accepted(self) -> bool:
        return self.status == "accepted"


# ---------------------------------------------------------------------------
# Token analytics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenAnalytics:
    """Token usage of a single generation call."""

    model_name: str
    provider: str
    prompt_tokens: int
    response_tokens: int
    total_tokens: int
    max_tokens: int
    utilization_percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_name": self.model_name,
            "provider": self.provider,
            "prompt_tokens": self.prompt_tokens,
            "response_tokens": self.response_tokens,
            "total_tokens": self.total_tokens,
            "max_tokens": self.max_tokens,
            "utilization_percentage": self.utilization_percentage,
        }


@dataclass(frozen=True)
class CumulativeTokenAnalytics(TokenAnalytics):
    """Token usage summed over every generation of one artifact lineage.

    ``max_tokens`` and ``utilization_percentage`` always refer to the
    latest call's ceiling, not to a blend of every model used.
    """

    generations: int = 1

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["generations"] = self.generations
        return data


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted by the refinement engine."""

    CYCLE_STARTED = "cycle.started"
    STATE_CHANGED = "state.changed"
    STREAM_OPENED = "stream.opened"
    STREAM_FRAGMENT = "stream.fragment"
    VALIDATION_FAILED = "validation.failed"
    RETRY_SCHEDULED = "retry.scheduled"
    ARTIFACT_ACCEPTED = "artifact.accepted"
    CYCLE_EXHAUSTED = "cycle.exhausted"
    CYCLE_FAILED = "cycle.failed"
    ANALYTICS_UPDATED = "analytics.updated"
    ANALYTICS_FAILED = "analytics.failed"


@dataclass
class ForgeEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
