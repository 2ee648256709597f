"""Mock analysis provider for testing and offline demos."""
from __future__ import annotations

import json
from typing import Any

from .base_provider import BaseLLMProvider
from .schemas import AnalysisRequest, AnalysisResponse, AnalysisUsage, RecommendationReply


class MockProvider(BaseLLMProvider):
    """Returns scripted replies instead of calling an API.

    Responses may be strings, dicts (serialized as JSON), RecommendationReply
    instances, or exceptions (raised for that attempt).
    """

    def __init__(self, config: dict[str, Any], responses: list[Any] | None = None, **kwargs):
        super().__init__(config, backoff_min=0.0, backoff_max=0.0)
        self.responses = list(responses or [])
        self.response_index = 0
        self.requests: list[AnalysisRequest] = []

    def set_responses(self, responses):
        """Set predefined responses for testing."""
        self.responses = list(responses)
        self.response_index = 0

    async def _call(self, request: AnalysisRequest) -> AnalysisResponse:
        self.requests.append(request)
        usage = AnalysisUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)

        if self.response_index >= len(self.responses):
            reply = RecommendationReply(recommendation="Mock response for testing", confidence=0.5)
            return AnalysisResponse(text=reply.model_dump_json(), structured=reply, usage=usage)

        response = self.responses[self.response_index]
        self.response_index += 1
        if isinstance(response, Exception):
            raise response
        if isinstance(response, RecommendationReply):
            return AnalysisResponse(text=response.model_dump_json(), structured=response, usage=usage)
        if isinstance(response, dict):
            return AnalysisResponse(text=json.dumps(response), usage=usage)
        return AnalysisResponse(text=str(response), usage=usage)

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def call_count(self) -> int:
        return len(self.requests)
