"""Async LLM completion client with a typed response and retry on transient errors."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

from venturelab.config import RetryPolicy, get_settings
from venturelab.errors import ParseFailed, UpstreamServiceFailed

log = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

_DEFAULT_MODELS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
    "openai_compatible": "gpt-4o-mini",
    "openrouter": "openai/gpt-4o",
}

_API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openai_compatible": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def llm_configured(provider: str | None = None) -> bool:
    """True when an API key for *provider* (default: configured provider) is set."""
    env_key = _API_KEY_ENV.get(provider or get_settings().llm_provider)
    return bool(env_key and os.environ.get(env_key, "").strip())


class EmptyCompletion(Exception):
    """The provider answered with no text."""


@dataclass
class Completion:
    """A single text completion plus usage metadata."""
    text: str
    model: str
    tokens_used: int | None = None


def _reject_constant(name: str) -> Any:
    raise ParseFailed(f"LLM returned a non-finite number: {name}")


def extract_json(text: str) -> dict[str, Any]:
    """Decode a JSON object from *text*, tolerating a markdown code fence.

    NaN and Infinity literals are rejected with ParseFailed.
    """
    m = _FENCE_RE.search(text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise ParseFailed(f"LLM returned invalid JSON: {text[:200]}") from exc
    if not isinstance(data, dict):
        raise ParseFailed(f"LLM returned JSON {type(data).__name__}, expected an object")
    return data


class LLMClient:
    """Unified async LLM client supporting Anthropic, OpenAI and OpenRouter."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        retry: RetryPolicy | None = None,
        max_tokens: int | None = None,
    ):
        settings = get_settings()
        self.provider = provider or settings.llm_provider
        self.model = model or settings.llm_model
        self.retry = retry or settings.retry
        self.max_tokens = max_tokens or settings.max_tokens
        self._api_key = api_key
        self._base_url = base_url
        self._sdk: Any = None
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider not in _DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")
        self.model = self.model or _DEFAULT_MODELS[self.provider]
        if self.provider == "anthropic":
            import anthropic
            self._sdk = anthropic
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get(_API_KEY_ENV["anthropic"])
            )
            return

        import openai
        self._sdk = openai
        kwargs: dict[str, Any] = {}
        if self.provider == "openrouter":
            key = self._api_key or os.environ.get(_API_KEY_ENV["openrouter"])
            url = self._base_url or OPENROUTER_BASE_URL
        else:
            key = self._api_key or os.environ.get(_API_KEY_ENV["openai"])
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
        if key:
            kwargs["api_key"] = key
        if url:
            kwargs["base_url"] = url
        self._client = openai.AsyncOpenAI(**kwargs)

    def is_retryable(self, exc: Exception) -> bool:
        """Timeouts, connection errors, rate limits and 5xx responses are transient."""
        if isinstance(exc, (TimeoutError, ConnectionError, EmptyCompletion)):
            return True
        if self._sdk is not None and isinstance(exc, self._sdk.APIConnectionError):
            return True
        status = getattr(exc, "status_code", None)
        return isinstance(status, int) and (status == 429 or 500 <= status < 600)

    async def _request(
        self, system: str, user: str, temperature: float, json_mode: bool,
    ) -> Completion:
        if self.provider == "anthropic":
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
            text = "".join(getattr(block, "text", "") for block in response.content).strip()
            usage = getattr(response, "usage", None)
            tokens = (usage.input_tokens + usage.output_tokens) if usage else None
            return Completion(text=text, model=getattr(response, "model", None) or self.model, tokens_used=tokens)

        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            **kwargs,
        )
        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            model=getattr(response, "model", None) or self.model,
            tokens_used=usage.total_tokens if usage else None,
        )

    async def complete(
        self, system: str, user: str, *, temperature: float = 0.7, json_mode: bool = False,
    ) -> Completion:
        """Send system+user messages, return the completion.

        Transient failures are retried with exponential backoff, and so are
        empty completions. Anything else raises UpstreamServiceFailed.
        """
        attempt = 0
        while True:
            try:
                completion = await self._request(system, user, temperature, json_mode)
                if not completion.text:
                    raise EmptyCompletion("LLM returned an empty response")
                break
            except Exception as exc:
                retryable = self.is_retryable(exc)
                if not retryable or attempt >= self.retry.max_retries:
                    raise UpstreamServiceFailed(f"LLM API call failed: {exc}", retryable=retryable) from exc
                delay = self.retry.delay_for(attempt)
                log.warning(
                    "LLM call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, self.retry.max_retries + 1, delay, exc,
                )
                attempt += 1
                await asyncio.sleep(delay)

        log.info("LLM completion from %s (%s tokens)", completion.model, completion.tokens_used)
        return completion

    async def complete_json(
        self, system: str, user: str, *, temperature: float = 0.2,
    ) -> tuple[dict[str, Any], Completion]:
        """Like :meth:`complete` but decodes the response as a JSON object."""
        completion = await self.complete(system, user, temperature=temperature, json_mode=True)
        return extract_json(completion.text), completion
