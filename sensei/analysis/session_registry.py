"""
Registry of per-session engine state.

Configs are restored from the durable store when the registry is built and
written back on every change; all other session state is in memory only.
"""

from __future__ import annotations

import logging
from typing import Any

from .config_store import ConfigStore, MemoryConfigStore
from .models import Session, SessionConfig, SessionKey

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every :class:`Session`, keyed by :class:`SessionKey`."""

    def __init__(self, store: ConfigStore | None = None):
        self.store = store or MemoryConfigStore()
        self._sessions: dict[SessionKey, Session] = {}
        self._restore()

    def _restore(self):
        stored = self.store.load()
        for key, partial in stored.items():
            self._sessions[key] = Session(key=key, config=SessionConfig.from_stored(partial))
        if stored:
            logger.info(f"Restored {len(stored)} session config(s)")

    def _persist(self, session: Session):
        self.store.save(session.key, session.config)

    def initialize(self, key: SessionKey, partial: dict[str, Any] | None = None) -> Session:
        """Create the session if needed and merge ``partial`` onto its config."""
        session = self._sessions.get(key)
        if session is None:
            session = Session(key=key)
            self._sessions[key] = session
            logger.debug(f"Created session {key}")
        if partial:
            session.config = session.config.merged(partial)
            self._persist(session)
        return session

    def update_config(self, key: SessionKey, partial: dict[str, Any]) -> Session:
        session = self.initialize(key)
        session.config = session.config.merged(partial)
        self._persist(session)
        return session

    def get(self, key: SessionKey) -> Session | None:
        return self._sessions.get(key)

    def get_or_create(self, key: SessionKey) -> Session:
        return self._sessions.get(key) or self.initialize(key)

    def cleanup(self, key: SessionKey) -> bool:
        """Drop all in-memory state for ``key``; the stored config is kept."""
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        session.episode.cancel_timer()
        logger.debug(f"Cleaned up session {key}")
        return True

    def forget(self, key: SessionKey):
        """Clean up and also delete the stored config."""
        self.cleanup(key)
        self.store.delete(key)

    def set_enabled(self, key: SessionKey, enabled: bool) -> Session:
        return self.update_config(key, {"enabled": bool(enabled)})

    def is_enabled(self, key: SessionKey) -> bool:
        session = self._sessions.get(key)
        return bool(session and session.config.enabled)

    def clear_recommendations(self, key: SessionKey) -> bool:
        session = self._sessions.get(key)
        if session is None:
            return False
        session.recommendations.clear()
        session.consecutive_auto_approvals = 0
        return True

    def reset_token_usage(self, key: SessionKey) -> bool:
        session = self._sessions.get(key)
        if session is None:
            return False
        session.token_usage = None
        return True

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __contains__(self, key: SessionKey) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
