"""Async LLM client used to refine prompt content."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..services.settings import LlmSettings
from .prompts import refine_messages, refine_single_turn

LOGGER = logging.getLogger(__name__)

DEFAULT_MODELS: Mapping[str, str] = {
    "openai": "gpt-4",
    "anthropic": "claude-3-sonnet-20240229",
}
DEFAULT_BASE_URLS: Mapping[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
}
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4096

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    APITimeoutError,
    RateLimitError,
    httpx.TimeoutException,
    httpx.TransportError,
)


class RefinementError(RuntimeError):
    """Raised when an LLM refinement request cannot be completed."""


class RefinementClient:
    """Refines prompt text through an OpenAI-compatible or Anthropic endpoint."""

    def __init__(
        self,
        settings: LlmSettings,
        *,
        openai_client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._openai = openai_client
        self._owns_openai = openai_client is None
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def settings(self) -> LlmSettings:
        return self._settings

    @property
    def model(self) -> str:
        configured = (self._settings.model or "").strip()
        return configured or DEFAULT_MODELS.get(self._provider(), "")

    @property
    def base_url(self) -> str:
        configured = (self._settings.base_url or "").strip()
        return configured or DEFAULT_BASE_URLS.get(self._provider(), "")

    async def refine(self, content: str) -> str:
        """Return the refined version of ``content``."""

        provider = self._provider()
        if provider not in DEFAULT_MODELS:
            raise RefinementError(f"Unsupported LLM provider: {self._settings.provider}")
        if not self._settings.api_key:
            raise RefinementError("API key is not configured. Update ~/.promptmux/settings.json.")

        LOGGER.debug("Refining %d character(s) via %s (%s)", len(content), provider, self.model)
        try:
            async for attempt in self._retrying():
                with attempt:
                    if provider == "openai":
                        return await self._refine_openai(content)
                    return await self._refine_anthropic(content)
        except _TRANSIENT_ERRORS as exc:
            raise RefinementError(f"Failed to send request to LLM API: {exc}") from exc
        raise RefinementError("Refinement did not produce a result")  # pragma: no cover

    async def aclose(self) -> None:
        """Release network resources owned by this client."""

        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        if self._openai is not None and self._owns_openai:
            await self._openai.close()
            self._openai = None

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _refine_openai(self, content: str) -> str:
        client = self._openai_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=refine_messages(content),  # type: ignore[arg-type]
            )
        except _TRANSIENT_ERRORS:
            raise
        except APIError as exc:
            raise RefinementError(f"LLM API error: {exc}") from exc
        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise RefinementError("Invalid OpenAI response format") from exc
        if not isinstance(text, str):
            raise RefinementError("Invalid OpenAI response format")
        return text

    async def _refine_anthropic(self, content: str) -> str:
        client = self._http_client()
        url = f"{self.base_url.rstrip('/')}/messages"
        body = {
            "model": self.model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "messages": refine_single_turn(content),
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._settings.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        response = await client.post(url, json=body, headers=headers)
        if not response.is_success:
            raise RefinementError(f"LLM API error: {response.text or 'Unknown error'}")
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise RefinementError(f"Failed to parse LLM response: {exc}") from exc
        try:
            text = payload["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RefinementError("Invalid Anthropic response format") from exc
        if not isinstance(text, str):
            raise RefinementError("Invalid Anthropic response format")
        return text

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _provider(self) -> str:
        return (self._settings.provider or "").strip().lower()

    def _openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            self._openai = AsyncOpenAI(
                api_key=self._settings.api_key,
                base_url=self.base_url,
                timeout=self._settings.request_timeout,
                max_retries=0,
            )
            self._owns_openai = True
        return self._openai

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._settings.request_timeout)
            self._owns_http = True
        return self._http

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        )


__all__ = ["DEFAULT_BASE_URLS", "DEFAULT_MODELS", "RefinementClient", "RefinementError"]
