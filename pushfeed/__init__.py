"""Poll the GitHub event feed, record push events, and enrich them."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
