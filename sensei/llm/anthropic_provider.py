"""
Anthropic Claude provider implementation.
"""

from __future__ import annotations

from typing import Any

from anthropic import AsyncAnthropic

from .base_provider import BaseLLMProvider, resolve_api_key
from .schemas import AnalysisRequest, AnalysisResponse, AnalysisUsage


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude provider."""

    def __init__(
        self,
        config: dict[str, Any],
        api_key: str | None = None,
        backoff_min: float = 2.0,
        backoff_max: float = 8.0,
        verbose: bool = False,
        **kwargs,
    ):
        """
        Initialize Anthropic provider.

        Args:
            config: Application configuration (reads ``anthropic.api_key_env``)
            api_key: API key (optional if using env var)
            backoff_min: Lower bound of the retry delay in seconds
            backoff_max: Upper bound of the retry delay in seconds
            verbose: Log request/response sizes
        """
        super().__init__(config, backoff_min=backoff_min, backoff_max=backoff_max, verbose=verbose)
        key = resolve_api_key(config, "anthropic", "ANTHROPIC_API_KEY", api_key)
        self.client = AsyncAnthropic(api_key=key, max_retries=0)

    async def _call(self, request: AnalysisRequest) -> AnalysisResponse:
        response = await self.client.messages.create(
            model=request.model,
            max_tokens=request.max_tokens,
            # Anthropic caps temperature at 1.0
            temperature=min(request.temperature, 1.0),
            system=request.system_prompt,
            messages=[{"role": "user", "content": request.user_prompt}],
            timeout=request.timeout_seconds,
        )

        text = "".join(
            getattr(block, "text", "") or ""
            for block in (response.content or [])
            if getattr(block, "type", "text") == "text"
        )

        usage = None
        if getattr(response, "usage", None):
            input_tokens = response.usage.input_tokens or 0
            output_tokens = response.usage.output_tokens or 0
            usage = AnalysisUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        return AnalysisResponse(text=text, usage=usage)

    @property
    def provider_name(self) -> str:
        return "Anthropic"
