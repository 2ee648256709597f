"""
Terminal monitor: the single entry point wiring the engine together.

A host creates one monitor, feeds it terminal captures and output chunks,
subscribes to its events, and relays manual approve/deny actions.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Sequence

from ..llm.unified_client import UnifiedAnalysisClient
from .approval import ApprovalPolicy
from .boundary import DEFAULT_VISIBLE_WINDOW, GenerationBoundaryDetector, SleepFunc
from .config_store import ConfigStore
from .events import EventEmitter, EventType, Listener
from .ingestor import OutputIngestor
from .models import Phase, Recommendation, Session, SessionKey
from .recommender import RecommendationEngine
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class TerminalMonitor:
    """Owns the registry, event emitter and every engine component."""

    def __init__(self, cfg: dict[str, Any] | None = None, store: ConfigStore | None = None, client=None,
                 sleep: SleepFunc | None = None, clock: Callable[[], float] = time.monotonic,
                 patterns: Sequence[re.Pattern] | None = None):
        self.cfg = cfg or {}
        analysis_cfg = self.cfg.get('analysis') or {}

        self.registry = SessionRegistry(store)
        self.events = EventEmitter()
        self.client = client or UnifiedAnalysisClient(self.cfg)
        self.policy = ApprovalPolicy(self.registry, self.events)
        self.engine = RecommendationEngine(self.registry, self.client, self.events, self.policy)
        self.ingestor = OutputIngestor(self.registry, self.engine, self.cfg, clock=clock)
        self.detector = GenerationBoundaryDetector(
            self.registry,
            on_complete=self._on_generation_complete,
            sleep=sleep,
            patterns=patterns,
            visible_window=int(analysis_cfg.get('visible_window', DEFAULT_VISIBLE_WINDOW)),
        )

    async def _on_generation_complete(self, key: SessionKey, text: str):
        await self.ingestor.append_episode(key, text)

    # Session lifecycle

    def initialize(self, key: SessionKey, partial: dict[str, Any] | None = None) -> Session:
        return self.registry.initialize(key, partial)

    def update_config(self, key: SessionKey, partial: dict[str, Any]) -> Session:
        return self.registry.update_config(key, partial)

    def set_enabled(self, key: SessionKey, enabled: bool) -> Session:
        return self.registry.set_enabled(key, enabled)

    def cleanup(self, key: SessionKey) -> bool:
        self.detector.cancel(key)
        return self.registry.cleanup(key)

    def clear_recommendations(self, key: SessionKey) -> bool:
        cleared = self.registry.clear_recommendations(key)
        if cleared:
            self.events.emit(EventType.PENDING_COUNT_CHANGED, key, count=0)
        return cleared

    # Output

    def observe_capture(self, key: SessionKey, log: Sequence[str], visible: Sequence[str] | None = None) -> Phase:
        return self.detector.observe(key, log, visible)

    async def append_output(self, key: SessionKey, text: str, immediate: bool = False) -> Recommendation | None:
        return await self.ingestor.append_output(key, text, immediate)

    def command_sent(self, key: SessionKey, log_length: int):
        """A new user command was issued; abandon the current episode."""
        self.detector.hard_reset(key, log_length)

    # Recommendations

    def recommendations(self, key: SessionKey) -> list[Recommendation]:
        session = self.registry.get(key)
        return list(session.recommendations) if session else []

    def approve(self, key: SessionKey, recommendation_id: str) -> Recommendation | None:
        return self.policy.approve(key, recommendation_id)

    def deny(self, key: SessionKey, recommendation_id: str) -> Recommendation | None:
        return self.policy.deny(key, recommendation_id)

    def subscribe(self, event_type: EventType, listener: Listener,
                  key: SessionKey | None = None) -> Callable[[], None]:
        return self.events.subscribe(event_type, listener, key)
