"""Event bus for decoupling the refinement engine from viewers."""

from uiforge.events.bus import ALL_EVENTS, EventBus, Unsubscribe

__all__ = ["ALL_EVENTS", "EventBus", "Unsubscribe"]
