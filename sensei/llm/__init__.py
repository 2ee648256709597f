"""Analysis service clients."""

from .base_provider import AnalysisError, MissingCredentialError, RateLimitedError
from .schemas import AnalysisRequest, AnalysisResponse, AnalysisUsage, RecommendationReply
from .unified_client import UnifiedAnalysisClient

__all__ = [
    "AnalysisError",
    "AnalysisRequest",
    "AnalysisResponse",
    "AnalysisUsage",
    "MissingCredentialError",
    "RateLimitedError",
    "RecommendationReply",
    "UnifiedAnalysisClient",
]
