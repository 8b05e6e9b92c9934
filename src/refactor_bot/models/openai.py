"""OpenAI Chat Completions client."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError, RawCompletion

__all__ = ["OpenAIChatClient"]

LOGGER = logging.getLogger(__name__)

CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"

# Takes the request payload and returns the raw response body.
Transport = Callable[[Dict[str, Any]], str]


def _timeout_from_env(default: float) -> float:
    configured = os.getenv("REFACTOR_BOT_TIMEOUT")
    if not configured:
        return default
    try:
        value = float(configured)
    except ValueError:
        LOGGER.warning("Ignoring invalid REFACTOR_BOT_TIMEOUT=%r", configured)
        return default
    return value if value > 0 else default


class OpenAIChatClient(LLMClient):
    """Chat Completions over plain HTTPS, or over an injected transport in tests."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = CHAT_COMPLETIONS_URL,
        model: str = "gpt-4o-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")
        self._url = os.getenv("OPENAI_BASE_URL", base_url)
        self._timeout = _timeout_from_env(timeout)
        self._transport: Transport = transport or self._post

    def _raw_invoke(self, payload: Dict[str, Any]) -> RawCompletion:
        try:
            body = self._transport(payload)
        except OSError as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error
        return self._read_completion(body)

    def _post(self, payload: Dict[str, Any]) -> str:
        request = urllib.request.Request(
            self._url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code} from {self._url}: {detail}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Could not reach {self._url}: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"No reply from {self._url} within {self._timeout}s") from error

    @staticmethod
    def _read_completion(body: str) -> RawCompletion:
        """Pull the first choice's text and the token usage out of a response body."""
        try:
            data = json.loads(body)
        except json.JSONDecodeError as error:
            raise LLMResponseFormatError("Chat completion response was not JSON.") from error
        if not isinstance(data, dict):
            raise LLMResponseFormatError("Chat completion response must be a JSON object.")
        if "error" in data:
            raise LLMTransportError(f"Chat completion failed: {data['error']}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as error:
            raise LLMResponseFormatError("Chat completion contained no message.") from error
        if isinstance(content, list):
            # Content-part arrays: keep the text parts in order.
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not isinstance(content, str):
            raise LLMResponseFormatError("Chat completion message had no text content.")

        usage = data.get("usage") or {}
        return RawCompletion(
            text=content,
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )
