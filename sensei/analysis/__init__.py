"""Terminal-output analysis engine."""

from .approval import ApprovalDecision, ApprovalPolicy, evaluate
from .boundary import GenerationBoundaryDetector
from .config_store import ConfigStore, JsonConfigStore, MemoryConfigStore
from .dedup import LineAccumulator
from .events import EngineEvent, EventEmitter, EventType
from .ingestor import OutputIngestor
from .models import Phase, Recommendation, Session, SessionConfig, SessionKey
from .monitor import TerminalMonitor
from .recommender import RecommendationEngine
from .session_registry import SessionRegistry

__all__ = [
    "ApprovalDecision",
    "ApprovalPolicy",
    "ConfigStore",
    "EngineEvent",
    "EventEmitter",
    "EventType",
    "GenerationBoundaryDetector",
    "JsonConfigStore",
    "LineAccumulator",
    "MemoryConfigStore",
    "OutputIngestor",
    "Phase",
    "Recommendation",
    "RecommendationEngine",
    "Session",
    "SessionConfig",
    "SessionKey",
    "SessionRegistry",
    "TerminalMonitor",
    "evaluate",
]
