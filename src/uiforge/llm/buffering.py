"""Chunk buffering between raw backend deltas and emitted fragments.

Backends differ wildly in delta granularity. A flush policy decides when
the buffered text is emitted: too often wastes downstream writes, too
rarely makes the viewer lag. Whatever the policy, the concatenation of
all emissions equals the concatenation of all deltas, and anything left
in the buffer when the source ends is always emitted.
"""

from __future__ import annotations

import time
from typing import AsyncIterable, AsyncIterator, Callable, Protocol

SIZE_THRESHOLD = 100  # characters
TIME_THRESHOLD = 0.1  # seconds


class FlushPolicy(Protocol):
    """Decides whether the current buffer should be emitted."""

    def should_flush(self, buffered: int) -> bool:
        ...

    def flushed(self) -> None:
        """Called after every emission, including the final one."""
        ...


class PassThroughPolicy:
    """Emit every delta immediately. For already coarse-grained sources."""

    def should_flush(self, buffered: int) -> bool:
        return buffered > 0

    def flushed(self) -> None:
        pass

    def __repr__(self) -> str:
        return "PassThroughPolicy()"


class SizeThresholdPolicy:
    """Emit once the buffer holds more than *threshold* characters."""

    def __init__(self, threshold: int = SIZE_THRESHOLD) -> None:
        self.threshold = threshold

    def should_flush(self, buffered: int) -> bool:
        return buffered > self.threshold

    def flushed(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"SizeThresholdPolicy(threshold={self.threshold})"


class TimeThresholdPolicy:
    """Emit when the buffer is non-empty and *interval* has elapsed.

    The interval is measured from the previous emission, or from policy
    creation before the first one.
    """

    def __init__(
        self,
        interval: float = TIME_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._last_flush = clock()

    def should_flush(self, buffered: int) -> bool:
        return buffered > 0 and self._clock() - self._last_flush >= self.interval

    def flushed(self) -> None:
        self._last_flush = self._clock()

    def __repr__(self) -> str:
        return f"TimeThresholdPolicy(interval={self.interval})"


async def buffered(
    deltas: AsyncIterable[str],
    policy: FlushPolicy,
) -> AsyncIterator[str]:
    """Re-chunk *deltas* according to *policy*.

    Arrival order is preserved. The remainder is flushed unconditionally
    when *deltas* is exhausted.
    """
    parts: list[str] = []
    size = 0
    async for delta in deltas:
        if not delta:
            continue
        parts.append(delta)
        size += len(delta)
        if policy.should_flush(size):
            yield "".join(parts)
            parts.clear()
            size = 0
            policy.flushed()
    if parts:
        yield "".join(parts)
        policy.flushed()
