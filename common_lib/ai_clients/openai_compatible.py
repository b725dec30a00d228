"""OpenAI 호환 스트리밍 클라이언트(OpenAI-compatible streaming chat client)."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Optional

import httpx

from ..config import get_settings
from ..errors import (
    ConfigurationError,
    MissingApiKeyError,
    NetworkError,
    ParseError,
    RequestTimeoutError,
)
from ..http_retry import execute, raise_for_response
from ..logger import get_logger
from .base import IAIClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """AI 제공자 설정(Chat-completion provider definition)."""

    name: str
    base_url: str
    default_model: str
    allowed_models: Optional[FrozenSet[str]] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def is_model_allowed(self, model: str) -> bool:
        return self.allowed_models is None or model in self.allowed_models


OPENROUTER_ALLOWED_MODELS: FrozenSet[str] = frozenset(
    {
        "moonshotai/kimi-k2-thinking",
        "anthropic/claude-sonnet-4.5",
        "anthropic/claude-3.5-sonnet",
        "openai/gpt-4o",
        "google/gemini-2.0-flash-exp:free",
        "meta-llama/llama-3.1-70b-instruct",
        "mistralai/mistral-large",
    }
)

PROVIDERS: Dict[str, ProviderConfig] = {
    "openai": ProviderConfig(
        name="openai",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o",
    ),
    "openrouter": ProviderConfig(
        name="openrouter",
        base_url="https://openrouter.ai/api/v1",
        default_model="moonshotai/kimi-k2-thinking",
        allowed_models=OPENROUTER_ALLOWED_MODELS,
    ),
}


def get_provider(name: str) -> ProviderConfig:
    """제공자 조회(Look up a provider, raising ConfigurationError when unknown)."""

    provider = PROVIDERS.get((name or "").strip().lower())
    if provider is None:
        raise ConfigurationError(f"Unknown AI provider: {name}", {"provider": name})
    return provider


def extract_delta(line: str) -> Optional[str]:
    """SSE 한 줄에서 델타 추출(Extract the content delta from one SSE line).

    Returns None for non-data lines, the ``[DONE]`` sentinel, malformed
    chunks and chunks without content.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream chunk: %s", data[:120])
        return None
    try:
        content = chunk["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


async def accumulate_stream(lines: AsyncIterator[str]) -> str:
    """스트림 누적(Concatenate every content delta of a streamed completion)."""

    parts: List[str] = []
    async for line in lines:
        delta = extract_delta(line)
        if delta:
            parts.append(delta)
    return "".join(parts)


class OpenAICompatibleClient(IAIClient):
    """OpenAI 호환 API 래퍼(Wrapper for OpenAI-compatible chat completion APIs)."""

    def __init__(
        self,
        provider: ProviderConfig,
        api_key: str,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_attempts: int = 1,
    ) -> None:
        settings = get_settings()
        if not api_key or not api_key.strip():
            raise MissingApiKeyError(provider.name)
        self._provider = provider
        self._api_key = api_key.strip()
        self._model = model or provider.default_model
        self._timeout = timeout or settings.ai_timeout_seconds
        self._client = client
        self._max_attempts = max_attempts
        self._temperature = settings.ai_temperature
        self._max_tokens = settings.ai_max_tokens
        self._allow_external = settings.allow_external_calls
        self._site_url = settings.site_url
        self._site_name = settings.site_name

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._provider.name == "openrouter":
            if self._site_url:
                headers["HTTP-Referer"] = self._site_url
            headers["X-Title"] = self._site_name
        headers.update(self._provider.extra_headers)
        return headers

    def build_payload(self, prompt: str, system: Optional[str] = None, json_mode: bool = False) -> Dict[str, Any]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": True,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def _stream(self, client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> str:
        target = f"POST {url}"
        try:
            async with client.stream(
                "POST", url, json=payload, headers=self._headers(), timeout=self._timeout
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    logger.error(
                        "%s API HTTP error: status=%s, body=%s",
                        self._provider.name,
                        response.status_code,
                        response.text[:500],
                    )
                    raise_for_response(target, response)
                return await accumulate_stream(response.aiter_lines())
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(target, self._timeout) from exc
        except httpx.TransportError as exc:
            raise NetworkError(target, str(exc) or exc.__class__.__name__) from exc

    async def chat(self, prompt: str, **kwargs: Any) -> str:
        """스트리밍 채팅 호출(Invoke streamed chat completion and return the full text)."""

        url = f"{self._provider.base_url}/chat/completions"
        if not self._allow_external:
            raise NetworkError(f"POST {url}", "external calls disabled by configuration")
        payload = self.build_payload(prompt, kwargs.get("system"), kwargs.get("json_mode", False))

        logger.info("Sending %s chat request with model %s", self._provider.name, self._model)
        if self._client is not None:
            content = await execute(
                f"POST {url}",
                lambda: self._stream(self._client, url, payload),
                max_attempts=self._max_attempts,
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                content = await execute(
                    f"POST {url}",
                    lambda: self._stream(client, url, payload),
                    max_attempts=self._max_attempts,
                )
        logger.info("%s chat completed (%d chars)", self._provider.name, len(content))
        return content

    async def structured_output(self, prompt: str, **kwargs: Any) -> Dict[str, Any]:
        """JSON 객체 응답(Request a JSON object response and decode it)."""

        text = await self.chat(prompt, json_mode=True, **kwargs)
        return parse_json_object(text)


def parse_json_object(text: str) -> Dict[str, Any]:
    """응답 JSON 디코딩(Decode a model response into a JSON object).

    Tolerates a surrounding Markdown code fence; anything else that is not
    a JSON object is a ParseError.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
        cleaned = cleaned.strip()
    if not cleaned:
        raise ParseError("AI response was empty")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ParseError("AI response was not valid JSON", {"snippet": cleaned[:200]}) from exc
    if not isinstance(data, dict):
        raise ParseError("AI response was not a JSON object", {"type": type(data).__name__})
    return data


__all__ = [
    "OpenAICompatibleClient",
    "OPENROUTER_ALLOWED_MODELS",
    "PROVIDERS",
    "ProviderConfig",
    "accumulate_stream",
    "extract_delta",
    "get_provider",
    "parse_json_object",
]
