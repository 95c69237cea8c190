"""Generation pipeline: normalize, validate, refine."""

from uiforge.core.normalizer import normalize
from uiforge.core.orchestrator import RefinementOrchestrator
from uiforge.core.session import ArtifactSession
from uiforge.core.validator import validate

__all__ = ["ArtifactSession", "RefinementOrchestrator", "normalize", "validate"]
