"""
Generation boundary detection over a live terminal transcript.

The detector is polled with the full transcript of a session and decides
when the coding agent starts and stops generating. Completion is debounced:
the working indicator has to stay absent for ``debounce_ms`` before the
episode is finalized and its accumulated output handed on for analysis.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Sequence

from .dedup import LineAccumulator
from .line_filters import WORKING_INDICATOR_PATTERNS, filter_context, is_working_indicator
from .models import GenerationEpisode, Phase, Session, SessionKey
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_VISIBLE_WINDOW = 40
MIN_DEBOUNCE_MS = 1000
MAX_DEBOUNCE_MS = 15000

CompletionCallback = Callable[[SessionKey, str], Awaitable]
SleepFunc = Callable[[float], Awaitable]


class GenerationBoundaryDetector:
    """Debounced Idle -> Generating -> Debouncing -> Idle state machine per session."""

    def __init__(self, registry: SessionRegistry, on_complete: CompletionCallback,
                 sleep: SleepFunc | None = None, patterns: Sequence[re.Pattern] | None = None,
                 visible_window: int = DEFAULT_VISIBLE_WINDOW):
        self.registry = registry
        self.on_complete = on_complete
        self.sleep = sleep or asyncio.sleep
        self.patterns = list(patterns) if patterns is not None else list(WORKING_INDICATOR_PATTERNS)
        self.visible_window = visible_window

    @staticmethod
    def debounce_seconds(session: Session) -> float:
        ms = min(max(session.config.debounce_ms, MIN_DEBOUNCE_MS), MAX_DEBOUNCE_MS)
        return ms / 1000.0

    def phase(self, key: SessionKey) -> Phase:
        session = self.registry.get(key)
        return session.episode.phase if session else Phase.IDLE

    def observe(self, key: SessionKey, log: Sequence[str], visible: Sequence[str] | None = None) -> Phase:
        """Advance the session's episode from one poll of the transcript."""
        session = self.registry.get_or_create(key)
        episode = session.episode
        log_length = len(log)

        if not session.config.enabled:
            if episode.phase != Phase.IDLE:
                self.hard_reset(key, log_length)
            else:
                episode.last_seen_offset = max(episode.last_seen_offset, log_length)
            return Phase.IDLE

        if visible is None:
            visible = log[-self.visible_window:] if self.visible_window else log
        marker = any(is_working_indicator(line, self.patterns) for line in visible)

        if episode.phase == Phase.IDLE:
            if marker:
                episode.phase = Phase.GENERATING
                episode.start_offset = log_length
                episode.last_seen_offset = log_length
                episode.accumulator = LineAccumulator()
                logger.debug(f"[{key}] Generation started at line {log_length}")
            else:
                episode.last_seen_offset = max(episode.last_seen_offset, log_length)
            return episode.phase

        self._consume(episode, log)

        if marker:
            if episode.phase == Phase.DEBOUNCING:
                episode.cancel_timer()
                logger.debug(f"[{key}] Working indicator reappeared, debounce cancelled")
            episode.phase = Phase.GENERATING
        elif episode.phase == Phase.GENERATING:
            episode.phase = Phase.DEBOUNCING
            delay = self.debounce_seconds(session)
            episode.timer = asyncio.get_running_loop().create_task(self._debounce(key, session, episode, delay))
            logger.debug(f"[{key}] Working indicator gone, finalizing in {delay:.1f}s")
        return episode.phase

    def _consume(self, episode: GenerationEpisode, log: Sequence[str]):
        if len(log) > episode.last_seen_offset:
            if episode.accumulator is None:
                episode.accumulator = LineAccumulator()
            episode.accumulator.feed(log[episode.last_seen_offset:])
        episode.last_seen_offset = max(episode.last_seen_offset, len(log))

    async def _debounce(self, key: SessionKey, session: Session, episode: GenerationEpisode, delay: float):
        await self.sleep(delay)
        if self.registry.get(key) is not session or session.episode is not episode:
            return
        if episode.phase != Phase.DEBOUNCING:
            return
        # Detach so a later hard reset cannot cancel the analysis below.
        episode.timer = None
        await self._finalize(key, session, episode)

    async def _finalize(self, key: SessionKey, session: Session, episode: GenerationEpisode):
        raw = episode.accumulator.text() if episode.accumulator is not None else ""
        session.episode = GenerationEpisode(
            start_offset=episode.last_seen_offset,
            last_seen_offset=episode.last_seen_offset,
        )
        text = filter_context(raw)
        if not text:
            logger.debug(f"[{key}] Generation finished with no usable output")
            return
        logger.info(f"[{key}] Generation finished, {len(text.splitlines())} line(s) captured")
        try:
            await self.on_complete(key, text)
        except Exception as e:
            logger.error(f"[{key}] Completion handler failed: {e}")

    def hard_reset(self, key: SessionKey, log_length: int):
        """Abandon the current episode without finalizing; a new command was sent."""
        session = self.registry.get(key)
        if session is None:
            return
        session.episode.cancel_timer()
        session.episode = GenerationEpisode(start_offset=log_length, last_seen_offset=log_length)
        logger.debug(f"[{key}] Episode reset at line {log_length}")

    def cancel(self, key: SessionKey) -> bool:
        session = self.registry.get(key)
        if session is None:
            return False
        return session.episode.cancel_timer()
