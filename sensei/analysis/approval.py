"""
Auto-approval policy.

``evaluate`` is a pure decision over a session's config, a recommendation and
the current streak of unattended approvals. The ``ApprovalPolicy`` applies
decisions and manual actions to session state and announces approvals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .events import EventEmitter, EventType
from .models import Recommendation, SessionConfig, SessionKey
from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalDecision:
    approve: bool
    reason: str


def evaluate(config: SessionConfig, recommendation: Recommendation, consecutive: int) -> ApprovalDecision:
    """Decide whether ``recommendation`` may run without a human in the loop."""
    if not config.auto_approve:
        return ApprovalDecision(False, "auto-approve disabled")
    if recommendation.executed:
        return ApprovalDecision(False, "already executed")
    if recommendation.is_diagnostic:
        return ApprovalDecision(False, "diagnostic")
    if recommendation.confidence < config.confidence_threshold:
        return ApprovalDecision(
            False, f"confidence {recommendation.confidence:.2f} below {config.confidence_threshold:.2f}"
        )
    if consecutive >= config.max_consecutive_auto_approvals:
        return ApprovalDecision(False, f"consecutive cap {config.max_consecutive_auto_approvals} reached")
    if config.require_command and not (recommendation.command or "").strip():
        return ApprovalDecision(False, "no command")
    return ApprovalDecision(True, "eligible")


class ApprovalPolicy:
    """Applies approval decisions and manual actions to sessions."""

    def __init__(self, registry: SessionRegistry, events: EventEmitter):
        self.registry = registry
        self.events = events

    def _emit_approved(self, rec: Recommendation):
        self.events.emit(
            EventType.APPROVED,
            rec.session_key,
            recommendation_id=rec.id,
            recommendation=rec.recommendation,
            command=rec.command,
            confidence=rec.confidence,
            auto_approved=rec.auto_approved,
            timestamp=rec.timestamp.isoformat(),
        )

    def _emit_pending(self, key: SessionKey):
        session = self.registry.get(key)
        if session is not None:
            self.events.emit(EventType.PENDING_COUNT_CHANGED, key, count=session.pending_count)

    def auto_approve(self, key: SessionKey, rec: Recommendation) -> ApprovalDecision:
        """Evaluate ``rec`` and execute it if eligible."""
        session = self.registry.get(key)
        if session is None:
            return ApprovalDecision(False, "unknown session")
        decision = evaluate(session.config, rec, session.consecutive_auto_approvals)
        if not decision.approve:
            logger.debug(f"[{key}] Holding {rec.id}: {decision.reason}")
            return decision

        rec.executed = True
        rec.auto_approved = True
        session.consecutive_auto_approvals += 1
        logger.info(
            f"[{key}] Auto-approved {rec.id} (confidence {rec.confidence:.2f}, "
            f"streak {session.consecutive_auto_approvals}/{session.config.max_consecutive_auto_approvals})"
        )
        self._emit_approved(rec)
        self._emit_pending(key)
        return decision

    def _resolve(self, key: SessionKey, recommendation_id: str, action: str) -> Recommendation | None:
        session = self.registry.get(key)
        if session is None:
            logger.warning(f"Cannot {action} {recommendation_id}: unknown session {key}")
            return None
        rec = session.find(recommendation_id)
        if rec is None:
            logger.warning(f"[{key}] Cannot {action} unknown recommendation {recommendation_id}")
            return None
        if rec.executed:
            logger.warning(f"[{key}] Cannot {action} {recommendation_id}: already executed")
            return None
        return rec

    def approve(self, key: SessionKey, recommendation_id: str) -> Recommendation | None:
        """Manual approval; clears the unattended streak."""
        rec = self._resolve(key, recommendation_id, "approve")
        if rec is None:
            return None
        rec.executed = True
        rec.auto_approved = False
        self.registry.get(key).consecutive_auto_approvals = 0
        logger.info(f"[{key}] Manually approved {rec.id}")
        self._emit_approved(rec)
        self._emit_pending(key)
        return rec

    def deny(self, key: SessionKey, recommendation_id: str) -> Recommendation | None:
        """Manual denial; clears the unattended streak."""
        rec = self._resolve(key, recommendation_id, "deny")
        if rec is None:
            return None
        rec.executed = True
        rec.denied = True
        self.registry.get(key).consecutive_auto_approvals = 0
        logger.info(f"[{key}] Denied {rec.id}")
        self._emit_pending(key)
        return rec
