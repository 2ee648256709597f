"""Session, recommendation and configuration models."""
from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..llm.token_tracker import TokenUsage

OUTPUT_BUFFER_SIZE = 50
MAX_RECOMMENDATIONS = 100
DIAGNOSTIC_PREFIX = "Analysis error: "
ENGINE_SOURCE = "sensei"

DEFAULT_SYSTEM_PROMPT = """You are Sensei, an assistant watching a coding agent's terminal session.
Analyze the terminal output and recommend what the developer should do next.

Guidelines:
- Be concise and actionable
- Focus on the most recent output
- Identify errors and suggest fixes
- Recommend the next step in the development workflow

Confidence scoring: use the full range from 0.0 to 1.0.
- 0.85-1.0: clear errors with known fixes, standard next steps
- 0.65-0.84: likely issues with several possible solutions
- 0.45-0.64: ambiguous situations that need investigation
- 0.0-0.44: unclear output, speculative suggestions

Reply with valid JSON only:
{"recommendation": "...", "command": "optional text to send to the agent", "confidence": 0.0}"""


class Phase(str, Enum):
    """Generation episode phases."""

    IDLE = "idle"
    GENERATING = "generating"
    DEBOUNCING = "debouncing"


@dataclass(frozen=True)
class SessionKey:
    """Composite key of an agent server and one of its sessions."""

    server_id: str
    session_id: str

    def __str__(self) -> str:
        return f"{self.server_id}:{self.session_id}"

    @classmethod
    def parse(cls, raw: str) -> "SessionKey":
        server_id, sep, session_id = raw.partition(":")
        if not sep or not server_id or not session_id:
            raise ValueError(f"Invalid session key: {raw!r}")
        return cls(server_id, session_id)


class SessionConfig(BaseModel):
    """Durable per-session configuration."""

    model_config = {"extra": "ignore", "validate_assignment": True}

    enabled: bool = False
    model: str = Field("gpt-5", min_length=1)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    auto_approve: bool = True
    temperature: float = Field(1.0, ge=0.0, le=2.0)
    max_tokens: int = Field(5000, gt=0)
    confidence_threshold: float = Field(0.8, ge=0.0, le=1.0)
    max_consecutive_auto_approvals: int = Field(5, ge=0)
    debounce_ms: int = Field(2000, ge=1000, le=15000)
    require_command: bool = False

    def merged(self, partial: dict[str, Any] | None) -> "SessionConfig":
        """Return a validated copy with ``partial`` applied on top."""
        if not partial:
            return self
        return SessionConfig.model_validate({**self.model_dump(), **partial})

    @classmethod
    def from_stored(cls, stored: dict[str, Any]) -> "SessionConfig":
        """Build from a stored partial, dropping fields that no longer validate."""
        config = cls()
        for name, value in (stored or {}).items():
            if name not in cls.model_fields:
                continue
            try:
                config = config.merged({name: value})
            except ValidationError:
                continue
        return config


def _recommendation_id(prefix: str) -> str:
    return f"{prefix}-rec-{uuid.uuid4().hex[:12]}"


@dataclass
class Recommendation:
    """A single proposed next action."""

    session_key: SessionKey
    recommendation: str
    confidence: float
    input: str = ""
    command: str | None = None
    source: str = ENGINE_SOURCE
    id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    executed: bool = False
    auto_approved: bool = False
    denied: bool = False

    def __post_init__(self):
        if not self.id:
            self.id = _recommendation_id(self.source)
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)

    @property
    def is_diagnostic(self) -> bool:
        return self.recommendation.startswith(DIAGNOSTIC_PREFIX)

    @property
    def pending(self) -> bool:
        return not self.executed

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "session_key": str(self.session_key),
            "input": self.input,
            "recommendation": self.recommendation,
            "command": self.command,
            "confidence": self.confidence,
            "executed": self.executed,
            "auto_approved": self.auto_approved,
            "denied": self.denied,
        }


@dataclass
class GenerationEpisode:
    """Transient state of one generation episode."""

    phase: Phase = Phase.IDLE
    start_offset: int = 0
    last_seen_offset: int = 0
    accumulator: Any = None
    timer: asyncio.Task | None = None

    def cancel_timer(self) -> bool:
        if self.timer is None:
            return False
        if not self.timer.done():
            self.timer.cancel()
        self.timer = None
        return True


@dataclass
class Session:
    """All state owned for one session key."""

    key: SessionKey
    config: SessionConfig = field(default_factory=SessionConfig)
    output_buffer: deque = field(default_factory=lambda: deque(maxlen=OUTPUT_BUFFER_SIZE))
    appended_total: int = 0
    last_analyzed_index: int = 0
    recommendations: list[Recommendation] = field(default_factory=list)
    consecutive_auto_approvals: int = 0
    token_usage: TokenUsage | None = None
    last_analysis_at: float | None = None
    episode: GenerationEpisode = field(default_factory=GenerationEpisode)

    def append_lines(self, lines: list[str]):
        self.output_buffer.extend(lines)
        self.appended_total += len(lines)

    def take_unanalyzed(self) -> list[str]:
        """Return lines not yet analyzed that are still buffered, and mark them analyzed.

        ``last_analyzed_index`` counts lines ever appended, so it stays valid
        after the buffer evicts old entries.
        """
        first_buffered = self.appended_total - len(self.output_buffer)
        start = max(self.last_analyzed_index, first_buffered) - first_buffered
        lines = list(self.output_buffer)[start:]
        self.mark_analyzed()
        return lines

    def mark_analyzed(self):
        self.last_analyzed_index = self.appended_total

    def find(self, recommendation_id: str) -> Recommendation | None:
        for rec in self.recommendations:
            if rec.id == recommendation_id:
                return rec
        return None

    def add_recommendation(self, recommendation: Recommendation) -> Recommendation:
        """Append, or replace a pending entry with the same id; enforce the cap."""
        for i, existing in enumerate(self.recommendations):
            if existing.id == recommendation.id:
                if existing.executed:
                    return existing
                self.recommendations[i] = recommendation
                return recommendation
        self.recommendations.append(recommendation)
        if len(self.recommendations) > MAX_RECOMMENDATIONS:
            del self.recommendations[: len(self.recommendations) - MAX_RECOMMENDATIONS]
        return recommendation

    @property
    def pending_count(self) -> int:
        return sum(1 for rec in self.recommendations if rec.pending)

    def record_usage(self, usage):
        if self.token_usage is None:
            self.token_usage = TokenUsage()
        self.token_usage.track_usage(usage)
