"""Token accounting that rides alongside every generation."""

from uiforge.analytics.tokens import (
    TokenEstimator,
    compute_analytics,
    merge_cumulative,
)

__all__ = ["TokenEstimator", "compute_analytics", "merge_cumulative"]
