"""Anthropic (Claude) ModelInvoker over the Messages API.

Authentication reads ANTHROPIC_API_KEY. Override the endpoint with
ANTHROPIC_API_URL and the default model with SPAN_MODEL.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from typing import Any

import httpx

from spanlabel.labeling.errors import ModelInvocationError

logger = logging.getLogger("spanlabel.shared.llm.anthropic")

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

DEFAULT_MAX_RETRIES = 4
DEFAULT_INITIAL_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 60.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
JITTER_FACTOR = 0.1
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 529}

# ---------------------------------------------------------------------------
# Model aliases
# ---------------------------------------------------------------------------

MODEL_MAP: dict[str, str] = {
    "haiku": "claude-3-5-haiku-latest",
    "claude-haiku": "claude-3-5-haiku-latest",
    "sonnet": "claude-sonnet-4-5-20250929",
    "claude-sonnet": "claude-sonnet-4-5-20250929",
    "claude-sonnet-4-5": "claude-sonnet-4-5-20250929",
}


class AnthropicInvoker:
    """ModelInvoker backed by the Anthropic Messages API.

    Retries 429/5xx responses, timeouts and connection errors with
    exponential backoff and jitter, honouring ``retry-after``. Raises
    ModelInvocationError once retries are exhausted or on any other
    non-success status.
    """

    API_ENDPOINT = "https://api.anthropic.com/v1/messages"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float = 90.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError("ANTHROPIC_API_KEY is not set")
        self.model = self._resolve_model(model or os.environ.get("SPAN_MODEL", "haiku"))
        self.endpoint = os.environ.get("ANTHROPIC_API_URL", self.API_ENDPOINT)
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._client = client

    @staticmethod
    def _resolve_model(model: str) -> str:
        resolved = MODEL_MAP.get(model, model)
        if resolved != model:
            logger.debug("Model alias: %s -> %s", model, resolved)
        return resolved

    # -- retry helpers ------------------------------------------------------

    @staticmethod
    def _calculate_backoff(attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return min(retry_after, DEFAULT_MAX_BACKOFF)
        backoff = DEFAULT_INITIAL_BACKOFF * (DEFAULT_BACKOFF_MULTIPLIER ** attempt)
        backoff = min(backoff, DEFAULT_MAX_BACKOFF)
        jitter = backoff * JITTER_FACTOR * random.random()
        return backoff + jitter

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> float | None:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return None

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        content = data.get("content", [])
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(parts).strip()

    # -- main call ----------------------------------------------------------

    async def __call__(
        self,
        system_prompt: str,
        user_payload: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        request_body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_payload}],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        start_time = time.time()
        try:
            for attempt in range(self.max_retries):
                last_attempt = attempt == self.max_retries - 1
                try:
                    response = await client.post(self.endpoint, json=request_body, headers=headers)
                except (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError) as e:
                    if last_attempt:
                        logger.error(
                            "[anthropic] FAILED %s after %d attempts | model=%s",
                            type(e).__name__, self.max_retries, self.model,
                        )
                        raise ModelInvocationError(
                            f"{type(e).__name__} after {self.max_retries} attempts: {e}"
                        ) from e
                    backoff = self._calculate_backoff(attempt, None)
                    logger.info(
                        "[anthropic] RETRY %s | attempt=%d/%d | wait=%.1fs",
                        type(e).__name__, attempt + 1, self.max_retries, backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue

                elapsed = time.time() - start_time
                if response.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
                    backoff = self._calculate_backoff(attempt, self._parse_retry_after(response))
                    logger.info(
                        "[anthropic] RETRY %d | attempt=%d/%d | model=%s | wait=%.1fs | elapsed=%.1fs",
                        response.status_code, attempt + 1, self.max_retries,
                        self.model, backoff, elapsed,
                    )
                    await asyncio.sleep(backoff)
                    continue

                if not response.is_success:
                    logger.error(
                        "[anthropic] FAILED %d | model=%s | elapsed=%.1fs | %s",
                        response.status_code, self.model, elapsed, response.text[:300],
                    )
                    raise ModelInvocationError(
                        f"Anthropic API returned {response.status_code}: {response.text[:300]}"
                    )

                data = response.json()
                usage = data.get("usage", {})
                logger.debug(
                    "[anthropic] OK | model=%s | in=%d out=%d | %.1fs",
                    self.model,
                    usage.get("input_tokens", 0),
                    usage.get("output_tokens", 0),
                    elapsed,
                )
                return self._extract_text(data)
        finally:
            if self._client is None:
                await client.aclose()

        raise ModelInvocationError(f"exhausted {self.max_retries} attempts")
