"""uiforge: prompt-to-component generation with streaming refinement."""

__version__ = "0.3.0"
