"""Token usage accounting for analysis calls."""
from dataclasses import dataclass

from .schemas import AnalysisUsage


@dataclass
class TokenUsage:
    """Accumulated token usage for one session."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    request_count: int = 0

    def track_usage(self, usage: AnalysisUsage):
        """Add the counts reported for a single call."""
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_tokens += usage.total_tokens or (usage.prompt_tokens + usage.completion_tokens)
        self.request_count += 1

    def reset(self):
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.request_count = 0

    def to_dict(self) -> dict:
        return {
            'prompt_tokens': self.prompt_tokens,
            'completion_tokens': self.completion_tokens,
            'total_tokens': self.total_tokens,
            'request_count': self.request_count,
        }
