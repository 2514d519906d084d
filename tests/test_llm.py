import pytest

from oqscore.core.errors import ProviderError
from oqscore.providers import llm
from oqscore.providers.llm import (
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    build_providers,
    display_name,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


@pytest.fixture
def posts(monkeypatch):
    """Capture outgoing requests and answer with the queued FakeResponse."""
    sent = []
    replies = []

    def fake_post(url, json=None, headers=None, params=None, timeout=None):
        sent.append({"url": url, "json": json, "headers": headers, "params": params})
        return replies.pop(0)

    monkeypatch.setattr(llm.requests, "post", fake_post)
    return sent, replies


def test_anthropic_reply_and_usage(posts):
    sent, replies = posts
    replies.append(FakeResponse(payload={
        "content": [{"type": "text", "text": '{"a": '}, {"type": "text", "text": "1}"}],
        "usage": {"input_tokens": 1200, "output_tokens": 300},
    }))
    reply = AnthropicProvider("sk-test").complete("prompt")
    assert reply.text == '{"a": 1}'
    assert (reply.input_tokens, reply.output_tokens, reply.total_tokens) == (1200, 300, 1500)
    assert sent[0]["headers"]["x-api-key"] == "sk-test"
    assert sent[0]["json"]["model"] == llm.DEFAULT_MODELS["anthropic"]


def test_openai_requests_json_mode(posts):
    sent, replies = posts
    replies.append(FakeResponse(payload={
        "choices": [{"message": {"content": "{}"}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }))
    reply = OpenAIProvider("key", model="gpt-4o-mini").complete("prompt")
    assert reply.total_tokens == 15
    assert sent[0]["json"]["response_format"] == {"type": "json_object"}
    assert sent[0]["json"]["model"] == "gpt-4o-mini"


def test_gemini_key_goes_in_query(posts):
    sent, replies = posts
    replies.append(FakeResponse(payload={
        "candidates": [{"content": {"parts": [{"text": "{}"}]}}],
        "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 3, "totalTokenCount": 10},
    }))
    reply = GeminiProvider("g-key").complete("prompt")
    assert reply.text == "{}"
    assert sent[0]["params"] == {"key": "g-key"}
    assert sent[0]["url"].endswith("gemini-2.0-flash:generateContent")


def test_http_error_raises(posts):
    _, replies = posts
    replies.append(FakeResponse(status_code=529, text="overloaded"))
    with pytest.raises(ProviderError, match="HTTP 529: overloaded"):
        AnthropicProvider("key").complete("prompt")


def test_empty_completion_raises(posts):
    _, replies = posts
    replies.append(FakeResponse(payload={"candidates": []}))
    with pytest.raises(ProviderError, match="Empty response"):
        GeminiProvider("key").complete("prompt")


def test_build_providers_follows_config_order_and_keys():
    config = {"providers": {"gemini": {"model": "gemini-x"}, "openai": {}, "anthropic": None, "mistral": {}}}
    env = {"GEMINI_API_KEY": "g", "ANTHROPIC_API_KEY": "a"}
    providers = build_providers(config, env)
    assert [(p.name, p.model) for p in providers] == [
        ("gemini", "gemini-x"),
        ("anthropic", llm.DEFAULT_MODELS["anthropic"]),
    ]


def test_build_providers_without_keys():
    assert build_providers({}, env={}) == []


def test_display_name():
    assert display_name("openai", "gpt-4o") == "GPT-4"
    assert display_name("mistral", "mistral-large-2") == "mistral"
