"""Pydantic schemas for analysis requests and replies."""
from pydantic import BaseModel, Field

DEFAULT_REQUEST_TIMEOUT_MS = 120_000
DEFAULT_MAX_RETRIES = 3


class RecommendationReply(BaseModel):
    """Structured reply expected from the analysis model."""
    recommendation: str = Field(description="What the developer should do next")
    command: str | None = Field(None, description="Optional command to send to the agent")
    confidence: float = Field(0.5, ge=0.0, le=1.0, description="Confidence score 0-1")


class AnalysisUsage(BaseModel):
    """Token counts reported by a provider for a single call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AnalysisRequest(BaseModel):
    """Everything a provider needs to analyze one block of terminal output."""
    system_prompt: str
    model: str
    temperature: float = 1.0
    max_tokens: int = 5000
    text: str
    timeout_ms: int = Field(DEFAULT_REQUEST_TIMEOUT_MS, gt=0)
    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=1, le=3)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def user_prompt(self) -> str:
        return f"Analyze this recent terminal output and provide a recommendation:\n\n{self.text}"


class AnalysisResponse(BaseModel):
    """Provider reply: raw text, optional structured payload and usage."""
    text: str
    structured: RecommendationReply | None = None
    usage: AnalysisUsage | None = None
