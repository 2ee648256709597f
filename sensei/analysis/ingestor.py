"""Throttled intake of raw session output."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from .models import Recommendation, SessionKey
from .recommender import RecommendationEngine
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_MS = 500


def split_output(text: str) -> list[str]:
    """Split raw output on newlines, dropping CR line endings and blank lines."""
    lines = (line[:-1] if line.endswith("\r") else line for line in text.split("\n"))
    return [line for line in lines if line.strip()]


class OutputIngestor:
    """Appends output to the session window and triggers analysis at a bounded rate."""

    def __init__(self, registry: SessionRegistry, engine: RecommendationEngine,
                 cfg: dict[str, Any] | None = None, clock: Callable[[], float] = time.monotonic):
        self.registry = registry
        self.engine = engine
        self.clock = clock
        analysis_cfg = (cfg or {}).get('analysis') or {}
        self.throttle_ms = int(analysis_cfg.get('throttle_ms', DEFAULT_THROTTLE_MS))

    async def append_output(self, key: SessionKey, text: str, immediate: bool = False) -> Recommendation | None:
        session = self.registry.get_or_create(key)
        if not session.config.enabled:
            return None

        session.append_lines(split_output(text))

        now = self.clock()
        if not immediate and session.last_analysis_at is not None:
            elapsed_ms = (now - session.last_analysis_at) * 1000.0
            if elapsed_ms < self.throttle_ms:
                return None
        session.last_analysis_at = now

        tail = session.take_unanalyzed()
        if not tail:
            return None
        logger.debug(f"[{key}] Analyzing {len(tail)} new line(s)")
        return await self.engine.analyze(key, "\n".join(tail))

    async def append_episode(self, key: SessionKey, text: str) -> Recommendation | None:
        """Record a finished generation episode and analyze it as a whole.

        The episode's lines still enter the output window, but the analysis
        gets the full consolidated text rather than the bounded window, and the
        window is marked analyzed so the same lines are not sent again.
        """
        session = self.registry.get(key)
        if session is None or not session.config.enabled:
            return None
        session.append_lines(split_output(text))
        session.mark_analyzed()
        session.last_analysis_at = self.clock()
        logger.debug(f"[{key}] Analyzing finished episode")
        return await self.engine.analyze(key, text)
