"""
Accumulation of repainted terminal lines into one ordered list.

A TUI repaints its screen while text is still streaming in, so the same
logical line is captured several times at different lengths. Every logical
line converges to a single entry holding its longest observed form.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .line_filters import DISCARD_RULES, first_match, looks_complete

logger = logging.getLogger(__name__)


class LineAccumulator:
    """Ordered list of distinct lines for one generation episode."""

    def __init__(self, discard_rules=None):
        self.discard_rules = list(discard_rules) if discard_rules is not None else DISCARD_RULES
        self._lines: list[str] = []

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def text(self) -> str:
        return "\n".join(self._lines)

    def clear(self):
        self._lines.clear()

    def feed(self, lines: Iterable[str]) -> int:
        """Merge newly captured lines; returns how many were kept or merged."""
        changed = 0
        seen = 0
        for raw in lines:
            seen += 1
            line = raw.rstrip()
            if first_match(self.discard_rules, line) is not None:
                continue
            if self._merge(line):
                changed += 1
        if seen:
            logger.debug(f"Accumulated {seen} captured line(s) into {len(self._lines)} entries")
        return changed

    def _merge(self, line: str) -> bool:
        candidate = line.strip()

        # Newest first: repaints usually touch the most recent lines.
        for i in range(len(self._lines) - 1, -1, -1):
            existing = self._lines[i].strip()
            extends = candidate.startswith(existing) and len(candidate) > len(existing)
            contains = bool(existing) and existing in candidate and candidate != existing
            if extends or contains:
                self._lines[i] = line
                self._drop_subsumed(i, candidate)
                return True

        for existing in self._lines:
            if candidate in existing.strip():
                return False

        if looks_complete(candidate):
            self._lines.append(line)
            return True
        return False

    def _drop_subsumed(self, keep: int, candidate: str):
        """Remove other entries that are now fragments of ``candidate``."""
        self._lines = [
            entry for j, entry in enumerate(self._lines)
            if j == keep or entry.strip() not in candidate
        ]
