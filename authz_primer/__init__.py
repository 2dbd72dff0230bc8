"""Authorization lessons: content lint, rendering and a guarded demo API."""

__version__ = "0.1.0"
