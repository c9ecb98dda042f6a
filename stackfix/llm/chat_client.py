from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from stackfix.errors import LLMError
from stackfix.settings import Settings


@dataclass(frozen=True)
class ChatCompletionsClient:
    """
    Calls an OpenAI-compatible chat completions API (OpenAI, OpenRouter, Groq).

    Endpoint: POST {base_url}/chat/completions
    """

    api_key: str
    base_url: str = "https://api.openai.com/v1"
    provider: str = "openai"
    timeout_s: float = 120.0
    # OpenAI reasoning models reject `max_tokens`; they take `max_completion_tokens`.
    max_tokens_param: str = "max_tokens"
    extra_headers: Dict[str, str] = field(default_factory=dict)
    max_retries: int = 3
    retry_backoff_s: float = 0.8
    transport: httpx.BaseTransport | None = None

    def chat(self, *, model: str, messages: List[Dict[str, str]], max_tokens: int = 2048) -> str:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers: Dict[str, str] = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self.extra_headers or {})

        # No temperature: some reasoning models only accept the default.
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            self.max_tokens_param: int(max(1, min(int(max_tokens), 32768))),
        }

        for attempt in range(1, max(1, int(self.max_retries)) + 1):
            try:
                with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                    r = client.post(url, headers=headers, json=payload)
                    if r.status_code != 200:
                        raise LLMError(f"{self.provider}_http_{r.status_code}: {r.text[:1500]}")
                    try:
                        data = r.json()
                    except ValueError as e:
                        raise LLMError(f"{self.provider}_response_not_json: {r.text[:1500]}") from e
            except (
                httpx.ReadError,
                httpx.RemoteProtocolError,
                httpx.ProtocolError,
                httpx.ConnectError,
                httpx.TimeoutException,
            ) as e:
                if attempt < int(self.max_retries):
                    time.sleep(self.retry_backoff_s * (2 ** (attempt - 1)))
                    continue
                raise LLMError(f"{self.provider}_transient_error after {attempt} attempts: {e}") from e
            except httpx.HTTPError as e:
                raise LLMError(f"{self.provider}_http_error: {e}") from e
            try:
                return str(data["choices"][0]["message"]["content"] or "")
            except (KeyError, IndexError, TypeError) as e:
                raise LLMError(f"{self.provider}_response_parse_error: {str(data)[:1500]}") from e

        raise LLMError(f"{self.provider}_failed")


def build_chat_client(
    settings: Settings, *, purpose: str = "fix", transport: httpx.BaseTransport | None = None
) -> Optional[Tuple[ChatCompletionsClient, str]]:
    """
    (client, model) for the configured provider, or None when LLM calls are disabled
    or the provider key is missing.
    """
    mode = (settings.llm_mode or "off").lower()
    if mode == "openai" and settings.openai_api_key:
        model = settings.openai_locator_model if purpose == "locate" else settings.openai_model
        return (
            ChatCompletionsClient(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                provider="openai",
                timeout_s=settings.llm_timeout_s,
                max_tokens_param="max_completion_tokens",
                transport=transport,
            ),
            model,
        )
    if mode == "openrouter" and settings.openrouter_api_key:
        return (
            ChatCompletionsClient(
                api_key=settings.openrouter_api_key,
                base_url=settings.openrouter_base_url,
                provider="openrouter",
                timeout_s=settings.llm_timeout_s,
                extra_headers={"X-Title": "stackfix"},
                transport=transport,
            ),
            settings.openrouter_model,
        )
    if mode == "groq" and settings.groq_api_key:
        return (
            ChatCompletionsClient(
                api_key=settings.groq_api_key,
                base_url=settings.groq_base_url,
                provider="groq",
                timeout_s=settings.llm_timeout_s,
                max_retries=1,
                transport=transport,
            ),
            settings.groq_model,
        )
    return None
