"""Scoring providers: Anthropic, OpenAI and Gemini over plain HTTP.

Each provider is enabled when its API key environment variable is set:
  - anthropic → ``ANTHROPIC_API_KEY`` (Messages API)
  - openai    → ``OPENAI_API_KEY``    (Chat Completions, JSON mode)
  - gemini    → ``GEMINI_API_KEY``    (generateContent, JSON mime type)
"""

import os
from typing import Any, Dict, List, Mapping, Optional

import requests

from oqscore.core.errors import ProviderError
from oqscore.core.logger import logger
from oqscore.models.datatypes import ProviderReply
from oqscore.providers.base import ScoringProvider

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"
_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4o",
    "gemini": "gemini-2.0-flash",
}

API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

DISPLAY_NAMES = {
    "anthropic": "Claude",
    "openai": "GPT-4",
    "gemini": "Gemini",
}

MAX_OUTPUT_TOKENS = 4096
TEMPERATURE = 0.3
ERROR_BODY_CHARS = 200


class _HTTPProvider(ScoringProvider):
    """Shared POST + error handling; subclasses build the payload and read the reply."""

    def __init__(self, api_key: str, model: Optional[str] = None, timeout: float = 120) -> None:
        self.api_key = api_key
        self.model = model or DEFAULT_MODELS[self.name]
        self.timeout = timeout

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str],
              params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        logger.debug(f"{type(self).__name__}: POST {self.model}")
        resp = requests.post(
            url, json=payload, headers=headers, params=params, timeout=self.timeout
        )
        if resp.status_code != 200:
            raise ProviderError(f"{self.model} error: HTTP {resp.status_code}: {resp.text[:ERROR_BODY_CHARS]}")
        return resp.json()

    def _empty(self) -> ProviderError:
        return ProviderError(f"{self.model} error: Empty response")


class AnthropicProvider(_HTTPProvider):
    name = "anthropic"

    def complete(self, prompt: str) -> ProviderReply:
        data = self._post(
            _ANTHROPIC_URL,
            {
                "model": self.model,
                "max_tokens": MAX_OUTPUT_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
            {
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
        )
        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        if not text:
            raise self._empty()
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens")
        output_tokens = usage.get("output_tokens")
        total = None
        if input_tokens is not None and output_tokens is not None:
            total = input_tokens + output_tokens
        return ProviderReply(text, input_tokens, output_tokens, total)


class OpenAIProvider(_HTTPProvider):
    name = "openai"

    def complete(self, prompt: str) -> ProviderReply:
        data = self._post(
            _OPENAI_URL,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": TEMPERATURE,
                "max_tokens": MAX_OUTPUT_TOKENS,
                "response_format": {"type": "json_object"},
            },
            {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
        )
        choices = data.get("choices") or [{}]
        text = (choices[0].get("message") or {}).get("content")
        if not text:
            raise self._empty()
        usage = data.get("usage") or {}
        return ProviderReply(
            text,
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        )


class GeminiProvider(_HTTPProvider):
    name = "gemini"

    def complete(self, prompt: str) -> ProviderReply:
        data = self._post(
            _GEMINI_URL.format(model=self.model),
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": TEMPERATURE,
                    "maxOutputTokens": MAX_OUTPUT_TOKENS,
                    "responseMimeType": "application/json",
                },
            },
            {"Content-Type": "application/json"},
            params={"key": self.api_key},
        )
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text:
            raise self._empty()
        meta = data.get("usageMetadata") or {}
        return ProviderReply(
            text,
            meta.get("promptTokenCount"),
            meta.get("candidatesTokenCount"),
            meta.get("totalTokenCount"),
        )


PROVIDER_CLASSES = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def build_providers(
    config: Dict[str, Any], env: Optional[Mapping[str, str]] = None
) -> List[ScoringProvider]:
    """Instantiate every configured provider whose API key is present.

    Args:
        config: Parsed ``config.yaml``; ``providers:`` maps name → ``{model}``
            and its key order is the call order.
        env: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Providers in configured order. Missing keys are logged and skipped.
    """
    env = os.environ if env is None else env
    block = config.get("providers") or {name: {} for name in PROVIDER_CLASSES}
    providers: List[ScoringProvider] = []
    for name, settings in block.items():
        cls = PROVIDER_CLASSES.get(name)
        if cls is None:
            logger.warning(f"build_providers: unknown provider '{name}' ignored")
            continue
        api_key = env.get(API_KEY_ENV[name], "")
        if not api_key:
            logger.info(f"build_providers: {API_KEY_ENV[name]} not set, {name} disabled")
            continue
        providers.append(cls(api_key=api_key, model=(settings or {}).get("model")))
    return providers


def display_name(provider: str, model: str = "") -> str:
    """Short human label used in disagreement narratives."""
    if provider in DISPLAY_NAMES:
        return DISPLAY_NAMES[provider]
    return (model or provider).split("-")[0]
