"""
Recommendation engine: turns consolidated terminal output into recommendations.

Every analysis call is bracketed by ``analyzing-started`` / ``analyzing-ended``
events. Failures never propagate to the caller; they become zero-confidence
diagnostic recommendations that the approval policy always holds back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..llm.base_provider import AnalysisError, MissingCredentialError, RateLimitedError
from ..llm.schemas import AnalysisRequest, AnalysisResponse, RecommendationReply
from ..utils.json_utils import extract_json_object
from .events import EventEmitter, EventType
from .models import DIAGNOSTIC_PREFIX, Recommendation, Session, SessionKey
from .session_registry import SessionRegistry

if TYPE_CHECKING:
    from .approval import ApprovalPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DIRECT_CONFIDENCE = 0.0
STREAMING_PLACEHOLDER = "..."

CREDENTIAL_MESSAGE = "Missing or invalid API key. Configure the key for this model's provider."
RATE_LIMIT_MESSAGE = "Rate limit reached. Please wait a moment before trying again."


def _coerce_confidence(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if confidence != confidence:  # NaN
        return DEFAULT_CONFIDENCE
    return min(max(confidence, 0.0), 1.0)


def parse_reply(response: AnalysisResponse) -> RecommendationReply:
    """Read ``{recommendation, command?, confidence}`` from a reply.

    Falls back to the whole reply text with confidence 0.5 when no usable
    JSON object is present.
    """
    if response.structured is not None:
        return response.structured

    text = (response.text or "").strip()
    data = extract_json_object(text)
    if data is not None and isinstance(data.get("recommendation"), str) and data["recommendation"].strip():
        command = data.get("command")
        if command is not None and not isinstance(command, str):
            command = str(command)
        return RecommendationReply(
            recommendation=data["recommendation"].strip(),
            command=(command or "").strip() or None,
            confidence=_coerce_confidence(data.get("confidence")),
        )
    logger.debug("Reply was not structured; using raw text")
    return RecommendationReply(recommendation=text, confidence=DEFAULT_CONFIDENCE)


def diagnostic_text(error: Exception) -> str:
    if isinstance(error, MissingCredentialError):
        return f"{DIAGNOSTIC_PREFIX}{CREDENTIAL_MESSAGE}"
    if isinstance(error, RateLimitedError):
        return f"{DIAGNOSTIC_PREFIX}{RATE_LIMIT_MESSAGE}"
    return f"{DIAGNOSTIC_PREFIX}{str(error) or error.__class__.__name__}"


class RecommendationEngine:
    """Runs analysis calls for sessions and records their outcome."""

    def __init__(self, registry: SessionRegistry, client, events: EventEmitter,
                 policy: ApprovalPolicy | None = None):
        self.registry = registry
        self.client = client
        self.events = events
        self.policy = policy

    def _build_request(self, session: Session, text: str, system_prompt: str | None = None) -> AnalysisRequest:
        config = session.config
        return AnalysisRequest(
            system_prompt=system_prompt or config.system_prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            text=text,
            timeout_ms=getattr(self.client, "timeout_ms", 120_000),
            max_retries=getattr(self.client, "max_retries", 3),
        )

    def _publish(self, session: Session, rec: Recommendation) -> Recommendation:
        stored = session.add_recommendation(rec)
        self.events.emit(EventType.RECOMMENDATION_AVAILABLE, session.key, recommendation=stored.to_dict())
        self.events.emit(EventType.PENDING_COUNT_CHANGED, session.key, count=session.pending_count)
        return stored

    async def _run(self, key: SessionKey, text: str, system_prompt: str | None = None) -> Recommendation | None:
        session = self.registry.get_or_create(key)
        request = self._build_request(session, text, system_prompt)

        self.events.emit(EventType.ANALYZING_STARTED, key)
        try:
            try:
                response = await self.client.analyze(request)
            except Exception as e:
                if isinstance(e, AnalysisError):
                    logger.error(f"[{key}] Analysis failed: {e}")
                else:
                    logger.exception(f"[{key}] Unexpected analysis failure: {e}")
                rec = Recommendation(session_key=key, input=text, recommendation=diagnostic_text(e), confidence=0.0)
            else:
                reply = parse_reply(response)
                if response.usage is not None:
                    session.record_usage(response.usage)
                rec = Recommendation(
                    session_key=key,
                    input=text,
                    recommendation=reply.recommendation,
                    command=reply.command,
                    confidence=reply.confidence,
                )

            if self.registry.get(key) is not session:
                logger.info(f"[{key}] Session cleaned up during analysis; discarding result")
                return None

            self._publish(session, rec)
            logger.info(f"[{key}] Recommendation {rec.id} (confidence {rec.confidence:.2f})")
            if self.policy is not None and self.policy.auto_approve(key, rec).approve:
                self.events.emit(EventType.RECOMMENDATION_AVAILABLE, key, recommendation=rec.to_dict())
            return rec
        finally:
            self.events.emit(EventType.ANALYZING_ENDED, key)

    async def analyze(self, key: SessionKey, text: str) -> Recommendation | None:
        """Analyze consolidated output for ``key``."""
        return await self._run(key, text)

    async def analyze_agent_response(self, key: SessionKey, response: str,
                                     agent_name: str = "agent") -> Recommendation | None:
        """Analyze a complete reply from a coding agent and suggest the next step."""
        session = self.registry.get(key)
        if session is None or not session.config.enabled:
            return None
        prompt = (
            f"{session.config.system_prompt}\n\n"
            f"The AI agent ({agent_name}) just responded with:\n{response}\n\n"
            "Analyze this response and provide a recommendation for what the developer should do next."
        )
        return await self._run(key, response, system_prompt=prompt)

    def add_direct_recommendation(self, key: SessionKey, user_input: str, text: str, agent_name: str = "agent",
                                  confidence: float | None = None,
                                  recommendation_id: str | None = None) -> Recommendation:
        """Record a recommendation produced elsewhere, without an analysis call.

        A pending entry with the same id is replaced in place.
        """
        session = self.registry.get(key)
        if session is None:
            session = self.registry.initialize(key, {"enabled": True})
        rec = Recommendation(
            session_key=key,
            input=user_input,
            recommendation=text,
            confidence=DIRECT_CONFIDENCE if confidence is None else confidence,
            source=agent_name,
            id=recommendation_id or "",
        )
        existing = session.find(rec.id)
        if existing is not None and existing.executed:
            logger.warning(f"[{key}] Ignoring update to executed recommendation {rec.id}")
            return existing
        return self._publish(session, rec)

    def start_streaming_recommendation(self, key: SessionKey, user_input: str, agent_name: str = "agent") -> str:
        """Add a placeholder recommendation and return its id for later updates."""
        rec = self.add_direct_recommendation(key, user_input, STREAMING_PLACEHOLDER, agent_name)
        return rec.id

    def update_streaming_recommendation(self, key: SessionKey, recommendation_id: str, user_input: str,
                                        text: str, agent_name: str = "agent") -> Recommendation:
        return self.add_direct_recommendation(key, user_input, text, agent_name,
                                              recommendation_id=recommendation_id)

    def project_context(self, limit: int = 5) -> str:
        """Markdown list of the most recent recommendations across all sessions."""
        recent = sorted(
            (rec for session in self.registry.sessions() for rec in session.recommendations),
            key=lambda rec: rec.timestamp,
            reverse=True,
        )[:limit]
        if not recent:
            return ""
        lines = ["## Recent Project Activity and Recommendations", ""]
        for i, rec in enumerate(recent, 1):
            lines.append(f"{i}. **{rec.timestamp.strftime('%H:%M:%S')}**: {rec.recommendation}")
            if rec.command:
                lines.append(f"   - Suggested command: `{rec.command}`")
        return "\n".join(lines) + "\n"
