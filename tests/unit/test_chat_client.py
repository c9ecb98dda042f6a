from __future__ import annotations

import httpx
import pytest

from stackfix.errors import LLMError
from stackfix.llm.chat_client import ChatCompletionsClient, build_chat_client
from stackfix.settings import Settings


class _FakeResp:
    def __init__(self, status_code: int, payload: dict):
        self.status_code = status_code
        self._payload = payload
        self.text = "x"

    def json(self):
        return self._payload


class _FakeClient:
    calls: list = []

    def __init__(self, *args, **kwargs):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def post(self, url, headers=None, json=None):
        _FakeClient.calls.append({"url": url, "headers": headers, "json": json})
        return _FakeResp(200, {"choices": [{"message": {"content": "ok"}}]})


def test_chat_client_parses_response(monkeypatch) -> None:
    _FakeClient.calls = []
    monkeypatch.setattr(httpx, "Client", _FakeClient)
    c = ChatCompletionsClient(api_key="k", base_url="https://api.example/v1/", max_tokens_param="max_completion_tokens")
    out = c.chat(model="m", messages=[{"role": "user", "content": "hi"}], max_tokens=100)
    assert out == "ok"
    call = _FakeClient.calls[0]
    assert call["url"] == "https://api.example/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer k"
    assert call["json"]["max_completion_tokens"] == 100
    assert "temperature" not in call["json"]


def test_chat_client_raises_on_http_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(401, text="invalid key"))
    c = ChatCompletionsClient(api_key="k", provider="groq", transport=transport)
    with pytest.raises(LLMError, match="groq_http_401"):
        c.chat(model="m", messages=[])


def test_chat_client_retries_transient_errors() -> None:
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "third time"}}]})

    c = ChatCompletionsClient(api_key="k", transport=httpx.MockTransport(handler), retry_backoff_s=0.0)
    assert c.chat(model="m", messages=[]) == "third time"
    assert attempts["n"] == 3


def test_chat_client_rejects_malformed_body() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
    c = ChatCompletionsClient(api_key="k", transport=transport)
    with pytest.raises(LLMError, match="response_parse_error"):
        c.chat(model="m", messages=[])


def test_build_chat_client_per_provider() -> None:
    assert build_chat_client(Settings(llm_mode="off", openai_api_key="k")) is None
    assert build_chat_client(Settings(llm_mode="openai")) is None

    client, model = build_chat_client(Settings(llm_mode="openai", openai_api_key="k"), purpose="locate")
    assert model == "gpt-5-nano"
    assert client.max_tokens_param == "max_completion_tokens"

    client, model = build_chat_client(Settings(llm_mode="groq", groq_api_key="g"))
    assert client.provider == "groq"
    assert model == "openai/gpt-oss-120b"

    client, model = build_chat_client(Settings(llm_mode="openrouter", openrouter_api_key="r"))
    assert client.extra_headers == {"X-Title": "stackfix"}


def test_chat_client_wraps_non_json_body() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    c = ChatCompletionsClient(api_key="k", provider="openai", transport=transport)
    with pytest.raises(LLMError, match="openai_response_not_json: <html>gateway"):
        c.chat(model="m", messages=[])


def test_chat_client_wraps_other_transport_errors() -> None:
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        raise httpx.WriteError("broken pipe", request=request)

    c = ChatCompletionsClient(api_key="k", transport=httpx.MockTransport(handler), retry_backoff_s=0.0)
    with pytest.raises(LLMError, match="openai_http_error: broken pipe"):
        c.chat(model="m", messages=[])
    assert attempts["n"] == 1
