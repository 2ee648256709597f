"""Base provider interface and typed failures for analysis clients."""
from __future__ import annotations

import asyncio
import logging
import os
import random
from abc import ABC, abstractmethod
from typing import Any

from .schemas import AnalysisRequest, AnalysisResponse, AnalysisUsage

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Generic failure talking to the analysis service."""


class MissingCredentialError(AnalysisError):
    """API key missing, rejected or lacking permission."""


class RateLimitedError(AnalysisError):
    """Upstream refused the call because of rate limiting or quota."""


def classify_error(exc: Exception) -> AnalysisError:
    """Map an SDK/transport exception onto the typed hierarchy.

    Uses the HTTP status when the exception carries one, then falls back to
    the message text the SDKs produce.
    """
    if isinstance(exc, AnalysisError):
        return exc
    status = getattr(exc, "status_code", None)
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if status in (401, 403) or "api key" in lowered or "api_key" in lowered:
        return MissingCredentialError(message)
    if status == 429 or "rate limit" in lowered or "rate_limit" in lowered:
        return RateLimitedError(message)
    return AnalysisError(message)


def resolve_api_key(config: dict[str, Any], section: str, default_env: str, api_key: str | None = None) -> str:
    """Return the API key for a provider or raise MissingCredentialError."""
    if api_key:
        return api_key
    provider_cfg = config.get(section, {}) if isinstance(config, dict) else {}
    env_name = provider_cfg.get("api_key_env", default_env)
    value = os.environ.get(env_name, "").strip()
    if not value:
        raise MissingCredentialError(f"API key not found in environment variable {env_name}")
    return value


class BaseLLMProvider(ABC):
    """Abstract base class for analysis providers."""

    def __init__(
        self,
        config: dict[str, Any],
        backoff_min: float = 2.0,
        backoff_max: float = 8.0,
        verbose: bool = False,
    ):
        self.config = config
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.verbose = verbose
        self._last_token_usage: AnalysisUsage | None = None

    @abstractmethod
    async def _call(self, request: AnalysisRequest) -> AnalysisResponse:
        """Make one attempt against the upstream API."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name for logging."""

    def backoff_delay(self) -> float:
        return random.uniform(self.backoff_min, self.backoff_max)

    async def analyze(self, request: AnalysisRequest, sleep=None) -> AnalysisResponse:
        """Run the request within its attempt budget.

        Credential failures are raised immediately; rate limits and generic
        errors are retried until ``request.max_retries`` attempts are spent.
        """
        sleep = sleep or asyncio.sleep

        if self.verbose:
            chars = len(request.system_prompt) + len(request.text)
            logger.info(f"[{self.provider_name} Request] model={request.model} prompt={chars:,} chars")

        last_err: AnalysisError | None = None
        for attempt in range(request.max_retries):
            try:
                response = await self._call(request)
                self._last_token_usage = response.usage
                if self.verbose:
                    logger.info(f"[{self.provider_name} Response] {len(response.text):,} chars")
                return response
            except Exception as e:
                last_err = classify_error(e)
                if isinstance(last_err, MissingCredentialError):
                    raise last_err from e
                logger.warning(f"{self.provider_name} attempt {attempt + 1}/{request.max_retries} failed: {e}")
                if attempt < request.max_retries - 1:
                    await sleep(self.backoff_delay())

        raise type(last_err)(f"Failed after {request.max_retries} attempts: {last_err}")

    def get_last_token_usage(self) -> AnalysisUsage | None:
        """Return token usage from the last successful call if available."""
        return self._last_token_usage
