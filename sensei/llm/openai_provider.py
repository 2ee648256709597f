"""OpenAI provider implementation."""
from __future__ import annotations

import os
from typing import Any

from openai import AsyncOpenAI

from .base_provider import BaseLLMProvider, resolve_api_key
from .schemas import AnalysisRequest, AnalysisResponse, AnalysisUsage


class OpenAIProvider(BaseLLMProvider):
    """OpenAI API provider implementation."""

    def __init__(
        self,
        config: dict[str, Any],
        api_key: str | None = None,
        backoff_min: float = 2.0,
        backoff_max: float = 8.0,
        verbose: bool = False,
        **kwargs,
    ):
        super().__init__(config, backoff_min=backoff_min, backoff_max=backoff_max, verbose=verbose)
        key = resolve_api_key(config, "openai", "OPENAI_API_KEY", api_key)

        # The SDK expects base_url to include the "/v1" path.
        raw_base_url = os.environ.get("OPENAI_BASE_URL") or config.get("openai", {}).get("base_url")
        base_url = (raw_base_url or "https://api.openai.com/v1").rstrip("/")
        if not base_url.endswith("/v1"):
            base_url = base_url + "/v1"

        # Retries are counted by BaseLLMProvider.analyze, not by the SDK.
        self.client = AsyncOpenAI(api_key=key, base_url=base_url, max_retries=0)

    @staticmethod
    def uses_responses_api(model: str) -> bool:
        env_force = os.environ.get("SENSEI_OPENAI_USE_RESPONSES", "").lower() in {"1", "true", "yes", "on"}
        return env_force or (model or "").lower().startswith("gpt-5")

    async def _call(self, request: AnalysisRequest) -> AnalysisResponse:
        if self.uses_responses_api(request.model):
            return await self._call_responses(request)

        completion = await self.client.chat.completions.create(
            model=request.model,
            messages=[
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            timeout=request.timeout_seconds,
        )
        usage = None
        if getattr(completion, "usage", None):
            usage = AnalysisUsage(
                prompt_tokens=completion.usage.prompt_tokens or 0,
                completion_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens or 0,
            )
        text = completion.choices[0].message.content or ""
        return AnalysisResponse(text=text, usage=usage)

    async def _call_responses(self, request: AnalysisRequest) -> AnalysisResponse:
        # Reasoning models reject custom temperatures, so none is sent here.
        params: dict[str, Any] = {
            "model": request.model,
            "instructions": request.system_prompt,
            "input": request.user_prompt,
            "max_output_tokens": request.max_tokens,
            "timeout": request.timeout_seconds,
        }
        if "valid json" in request.system_prompt.lower():
            params["text"] = {"format": {"type": "json_object"}}
        resp = await self.client.responses.create(**params)

        usage = None
        raw_usage = getattr(resp, "usage", None)
        if raw_usage:
            usage = AnalysisUsage(
                prompt_tokens=getattr(raw_usage, "input_tokens", 0) or 0,
                completion_tokens=getattr(raw_usage, "output_tokens", 0) or 0,
                total_tokens=getattr(raw_usage, "total_tokens", 0) or 0,
            )

        text = getattr(resp, "output_text", None)
        if text is None:
            chunks = []
            for item in getattr(resp, "output", None) or []:
                for part in getattr(item, "content", None) or []:
                    part_text = getattr(part, "text", None)
                    if isinstance(part_text, str) and part_text:
                        chunks.append(part_text)
            text = "\n".join(chunks)
        return AnalysisResponse(text=text, usage=usage)

    @property
    def provider_name(self) -> str:
        return "OpenAI"
