"""Streaming provider adapters.

Each backend speaks a different streaming dialect. An adapter hides the
request shape and the event framing of one backend behind a single
contract: ``stream(request)`` yields raw text deltas in arrival order and
ends either cleanly or with ``TransportFailure``.

Transport trouble before the first delta is fatal. Once text has been
delivered, an interrupted transport is treated as a premature end of the
stream: the caller keeps what it has and decides what to do with it.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from uiforge.config import ProviderConfig
from uiforge.errors import RequestRejected, TransportFailure
from uiforge.llm.buffering import (
    FlushPolicy,
    PassThroughPolicy,
    SizeThresholdPolicy,
    TimeThresholdPolicy,
)
from uiforge.types import GenerationRequest

_logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Base class for one streaming backend."""

    name: str = ""
    default_base_url: str = ""
    health_path: str = "/models"
    # Upper bound on requested completion tokens; settings may ask for the
    # model's whole context window, which backends refuse as output size.
    max_output_tokens: int = 8192

    def __init__(
        self,
        api_key: str,
        base_url: str = "",
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=(base_url or self.default_base_url).rstrip("/"),
            headers=self._headers(),
            timeout=httpx.Timeout(timeout, connect=30, read=60),
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ProviderAdapter:
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Backend-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def _endpoint(self, request: GenerationRequest) -> tuple[str, dict[str, str]]:
        """Return (path, query params) for the streaming call."""

    @abstractmethod
    def _payload(self, request: GenerationRequest) -> dict[str, Any]:
        ...

    @abstractmethod
    def _extract(self, event: dict[str, Any]) -> str | None:
        """Return the text carried by *event*, or ``None`` if it carries none."""

    def _is_terminal(self, event: dict[str, Any]) -> bool:
        return False

    @abstractmethod
    def flush_policy(self) -> FlushPolicy:
        """A fresh flush policy for one stream."""

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield raw text deltas for *request*. Finite and not restartable."""
        if request.provider != self.name:
            raise RequestRejected(
                f"{self.name} adapter cannot serve provider {request.provider!r}"
            )
        path, params = self._endpoint(request)
        payload = self._payload(request)
        delivered = False

        try:
            async with self._client.stream(
                "POST", path, params=params or None, json=payload,
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode(errors="replace")
                    raise TransportFailure(
                        f"HTTP {resp.status_code}: {body[:300]}",
                        provider=self.name,
                        status_code=resp.status_code,
                    )
                async for event in _sse_events(resp):
                    text = self._extract(event)
                    if text:
                        delivered = True
                        yield text
                    if self._is_terminal(event):
                        break
        except httpx.RequestError as e:
            if delivered:
                _logger.warning(
                    "%s stream interrupted after partial output: %s", self.name, e,
                )
                return
            raise TransportFailure(str(e) or type(e).__name__, provider=self.name) from e

    async def probe(self) -> bool:
        """Cheap reachability/auth check used by the health monitor."""
        try:
            resp = await self._client.get(self.health_path)
        except httpx.RequestError as e:
            _logger.info("%s health probe failed: %s", self.name, e)
            return False
        if resp.status_code >= 400:
            _logger.info("%s health probe returned %d", self.name, resp.status_code)
            return False
        return True

    def _output_tokens(self, request: GenerationRequest) -> int:
        return min(request.settings.max_tokens, self.max_output_tokens)

    async def close(self) -> None:
        await self._client.aclose()


async def _sse_events(resp: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Parse ``data:`` lines of a server-sent-event body into JSON objects."""
    async for raw_line in resp.aiter_lines():
        if not raw_line.startswith("data:"):
            continue
        data_str = raw_line[5:].strip()
        if not data_str:
            continue
        if data_str == "[DONE]":
            return
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            _logger.debug("Skipping undecodable SSE line: %s", data_str[:80])
            continue
        if isinstance(data, dict):
            yield data


# ---------------------------------------------------------------------------
# OpenAI-compatible backends
# ---------------------------------------------------------------------------

class OpenAIAdapter(ProviderAdapter):
    """Chat-completions SSE; text lives in ``choices[0].delta.content``."""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    max_output_tokens = 16384

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: GenerationRequest) -> tuple[str, dict[str, str]]:
        return "/chat/completions", {}

    def _payload(self, request: GenerationRequest) -> dict[str, Any]:
        s = request.settings
        return {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages],
            "stream": True,
            "temperature": s.temperature,
            "max_tokens": self._output_tokens(request),
            "top_p": s.top_p,
            "frequency_penalty": s.frequency_penalty,
            "presence_penalty": s.presence_penalty,
        }

    def _extract(self, event: dict[str, Any]) -> str | None:
        choices = event.get("choices") or [{}]
        delta = choices[0].get("delta") or {}
        return delta.get("content")

    def flush_policy(self) -> FlushPolicy:
        return SizeThresholdPolicy()


class DeepSeekAdapter(OpenAIAdapter):
    """OpenAI wire format; token-level deltas, so flush on a timer."""

    name = "deepseek"
    default_base_url = "https://api.deepseek.com"
    max_output_tokens = 8192

    def flush_policy(self) -> FlushPolicy:
        return TimeThresholdPolicy()


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class AnthropicAdapter(ProviderAdapter):
    """Messages API SSE; only ``content_block_delta`` events carry text."""

    name = "anthropic"
    default_base_url = "https://api.anthropic.com"
    health_path = "/v1/models"
    api_version = "2023-06-01"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: GenerationRequest) -> tuple[str, dict[str, str]]:
        return "/v1/messages", {}

    def _payload(self, request: GenerationRequest) -> dict[str, Any]:
        s = request.settings
        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": self._output_tokens(request),
            "messages": [m.to_dict() for m in request.conversation],
            "stream": True,
            "temperature": s.temperature,
        }
        system = request.system_text
        if system:
            payload["system"] = system
        if s.top_p != 1.0:
            payload["top_p"] = s.top_p
        return payload

    def _extract(self, event: dict[str, Any]) -> str | None:
        kind = event.get("type")
        if kind == "error":
            err = event.get("error") or {}
            raise TransportFailure(
                err.get("message", "stream error"), provider=self.name,
            )
        if kind != "content_block_delta":
            return None
        delta = event.get("delta") or {}
        if delta.get("type", "text_delta") != "text_delta":
            return None
        return delta.get("text")

    def _is_terminal(self, event: dict[str, Any]) -> bool:
        return event.get("type") == "message_stop"

    def flush_policy(self) -> FlushPolicy:
        return SizeThresholdPolicy()


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------

class GoogleAdapter(ProviderAdapter):
    """Gemini ``streamGenerateContent`` SSE; each event is a coarse text piece."""

    name = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: GenerationRequest) -> tuple[str, dict[str, str]]:
        return f"/models/{request.model}:streamGenerateContent", {"alt": "sse"}

    def _payload(self, request: GenerationRequest) -> dict[str, Any]:
        s = request.settings
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in request.conversation
        ]
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": s.temperature,
                "topP": s.top_p,
                "maxOutputTokens": self._output_tokens(request),
            },
        }
        system = request.system_text
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    def _extract(self, event: dict[str, Any]) -> str | None:
        candidates = event.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        return text or None

    def flush_policy(self) -> FlushPolicy:
        return PassThroughPolicy()


ADAPTERS: dict[str, type[ProviderAdapter]] = {
    cls.name: cls
    for cls in (OpenAIAdapter, AnthropicAdapter, GoogleAdapter, DeepSeekAdapter)
}
