"""Unified analysis client that routes requests to a provider per model."""
from __future__ import annotations

import logging
import os
from typing import Any

from .anthropic_provider import AnthropicProvider
from .base_provider import BaseLLMProvider
from .mock_provider import MockProvider
from .openai_provider import OpenAIProvider
from .schemas import AnalysisRequest, AnalysisResponse

logger = logging.getLogger(__name__)

PROVIDERS: dict[str, type[BaseLLMProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "mock": MockProvider,
}


def provider_for_model(model: str, cfg: dict[str, Any] | None = None) -> str:
    """Pick a provider name for a model identifier.

    An explicit ``providers.<model>`` entry in config wins; otherwise the
    model name decides (``claude*`` is Anthropic, ``mock*`` is the mock).
    """
    overrides = (cfg or {}).get("providers", {}) or {}
    if model in overrides:
        return str(overrides[model]).lower()
    name = (model or "").lower()
    if name.startswith("claude"):
        return "anthropic"
    if name.startswith("mock"):
        return "mock"
    return "openai"


class UnifiedAnalysisClient:
    """
    Analysis client that can work with multiple providers.

    Providers are created lazily on first use of a model and cached, so a
    missing credential surfaces as a typed error on the call that needs it.
    """

    def __init__(self, cfg: dict[str, Any] | None = None, providers: dict[str, BaseLLMProvider] | None = None):
        self.cfg = cfg or {}
        self._providers: dict[str, BaseLLMProvider] = dict(providers or {})

        retry_cfg = self.cfg.get("retries", {})
        logging_cfg = self.cfg.get("logging", {})
        env_verbose = os.environ.get("SENSEI_LLM_VERBOSE", "").lower() in {"1", "true", "yes", "on"}
        self._provider_kwargs = {
            "backoff_min": retry_cfg.get("backoff_min_seconds", 2),
            "backoff_max": retry_cfg.get("backoff_max_seconds", 8),
            "verbose": bool(logging_cfg.get("llm_verbose", False) or env_verbose),
        }

    @property
    def timeout_ms(self) -> int:
        return int(self.cfg.get("timeouts", {}).get("request_seconds", 120) * 1000)

    @property
    def max_retries(self) -> int:
        return min(int(self.cfg.get("retries", {}).get("max_attempts", 3)), 3)

    def provider(self, model: str) -> BaseLLMProvider:
        name = provider_for_model(model, self.cfg)
        if name not in self._providers:
            if name not in PROVIDERS:
                raise ValueError(f"Unknown provider: {name}")
            self._providers[name] = PROVIDERS[name](config=self.cfg, **self._provider_kwargs)
            logger.debug(f"Initialized {name} provider for model {model}")
        return self._providers[name]

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        return await self.provider(request.model).analyze(request)
