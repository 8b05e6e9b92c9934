"""Async client base class shared by all language-model integrations."""

from __future__ import annotations

import ast
import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Mapping, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from ..budget import MODEL_PRICES_CENTS, Budget, estimate_cost_cents

__all__ = [
    "Completion",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "RETRYABLE_ERRORS",
    "RawCompletion",
    "extract_code_block",
    "parse_json_payload",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class LLMClientError(RuntimeError):
    """Base error raised for language-model client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns output that cannot be processed."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated validation failures."""


# Failures caused by what the model produced, as opposed to how it was reached.
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (LLMResponseFormatError, LLMRetryError)


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Chat request sent to a model."""

    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: float = 0.0
    max_tokens: Optional[int] = None
    budget: Optional[Budget] = None
    label: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready Chat Completions payload."""
        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.prompt})

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "messages": messages,
        }
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass(slots=True, frozen=True)
class RawCompletion:
    """What a transport returns before costs are applied."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass(slots=True, frozen=True)
class Completion:
    """Model reply together with its usage and cost."""

    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_cents: float = 0.0


class LLMClient:
    """High-level helper that enforces budgets and retries transient failures."""

    def __init__(
        self,
        model: str,
        *,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        prices: Mapping[str, tuple[float, float]] = MODEL_PRICES_CENTS,
    ) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._prices = prices

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    async def complete(self, request: LLMRequest[Any]) -> Completion:
        """Invoke the model once, retrying only transport failures."""
        if request.budget is not None:
            request.budget.ensure_available()

        payload = request.to_payload(self._model)
        model = payload["model"]
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                raw = await asyncio.to_thread(self._raw_invoke, payload)
                break
            except LLMTransportError as error:
                last_error = error
                LOGGER.warning(
                    "Transport failure for %s (attempt %d/%d): %s",
                    model,
                    attempt,
                    self._max_attempts,
                    error,
                )
                if attempt >= self._max_attempts:
                    raise
                await asyncio.sleep(self._retry_delay)
        else:  # pragma: no cover - loop always breaks or raises
            raise LLMTransportError(str(last_error))

        cost = estimate_cost_cents(
            model,
            raw.prompt_tokens,
            raw.completion_tokens,
            prices=self._prices,
        )
        if request.budget is not None:
            request.budget.charge(cost, label=request.label or model)
        if not raw.text.strip():
            raise LLMResponseFormatError(f"Model {model} returned an empty response.")
        return Completion(
            text=raw.text,
            model=model,
            prompt_tokens=raw.prompt_tokens,
            completion_tokens=raw.completion_tokens,
            cost_cents=cost,
        )

    async def complete_structured(
        self,
        request: LLMRequest[Any],
        response_model: Type[T],
        *,
        max_attempts: Optional[int] = None,
    ) -> tuple[T, Completion]:
        """Invoke the model and validate its JSON reply into ``response_model``."""
        attempts = max_attempts or self._max_attempts
        adapter = TypeAdapter(response_model)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            completion = await self.complete(request)
            try:
                data = parse_json_payload(completion.text)
                return adapter.validate_python(data), completion
            except (LLMResponseFormatError, ValidationError) as error:
                last_error = error
                LOGGER.debug("Structured reply rejected (attempt %d/%d): %s", attempt, attempts, error)

        raise LLMRetryError(
            f"Failed to produce schema-valid JSON after {attempts} attempt(s) for model "
            f"{request.model or self._model}"
        ) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> RawCompletion:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")


_CODE_BLOCK_RE = re.compile(r"```[^\n`]*\n(?P<body>.*?)```", re.DOTALL)


def extract_code_block(text: str) -> str:
    """Return the body of the last fenced code block in ``text``."""
    matches = list(_CODE_BLOCK_RE.finditer(text))
    if not matches:
        raise LLMResponseFormatError("Model response did not contain a fenced code block.")
    body = matches[-1].group("body")
    return body if body.endswith("\n") else f"{body}\n"


# Typographic characters models like to emit inside JSON.
_TYPOGRAPHY = str.maketrans(
    {"“": '"', "”": '"', "‘": "'", "’": "'", " ": " ", "﻿": ""}
)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_BRACKETS = {"{": "}", "[": "]"}


def parse_json_payload(raw_response: str) -> Any:
    """Decode the JSON document contained in a model reply.

    Tolerates a surrounding code fence or prose, typographic quotes, trailing
    commas and Python literal syntax (single quotes, ``True``/``None``).
    """
    text = raw_response.strip().translate(_TYPOGRAPHY)
    if not text:
        raise LLMResponseFormatError("Model returned an empty response.")

    for candidate in _json_candidates(text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            literal = _python_literal(candidate)
            if literal is not None:
                return literal
    raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}")


def _json_candidates(text: str) -> list[str]:
    """Progressively narrower readings of ``text`` worth trying to decode."""
    readings = [text]
    fenced = list(_CODE_BLOCK_RE.finditer(text))
    if fenced:
        readings.append(fenced[0].group("body").strip())
    embedded = _first_balanced_span(readings[-1])
    if embedded is not None:
        readings.append(embedded)

    candidates: list[str] = []
    for reading in readings:
        for variant in (reading, _TRAILING_COMMA_RE.sub(r"\1", reading)):
            if variant and variant not in candidates:
                candidates.append(variant)
    return candidates


def _first_balanced_span(text: str) -> Optional[str]:
    """Return the first complete ``{...}`` or ``[...]`` in ``text``, skipping string contents."""
    start = next((index for index, char in enumerate(text) if char in _BRACKETS), None)
    if start is None:
        return None

    pending: list[str] = []
    quote: Optional[str] = None
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char in _BRACKETS:
            pending.append(_BRACKETS[char])
        elif pending and char == pending[-1]:
            pending.pop()
            if not pending:
                return text[start : index + 1]
    return None


def _python_literal(candidate: str) -> Any | None:
    """Read ``candidate`` as a Python dict or list literal, normalised to JSON types."""
    try:
        value = ast.literal_eval(candidate)
    except (SyntaxError, ValueError):
        return None
    if not isinstance(value, (dict, list)):
        return None
    return json.loads(json.dumps(value, default=str))
