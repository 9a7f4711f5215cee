"""Top-level runs driven by the CLI: ``repair`` (mutating) and ``check`` (read-only)."""

from __future__ import annotations
