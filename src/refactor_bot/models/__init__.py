"""Language-model clients."""

from .llm_client import (
    RETRYABLE_ERRORS,
    Completion,
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
    RawCompletion,
    extract_code_block,
    parse_json_payload,
)
from .openai import OpenAIChatClient

__all__ = [
    "Completion",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "OpenAIChatClient",
    "RETRYABLE_ERRORS",
    "RawCompletion",
    "extract_code_block",
    "parse_json_payload",
]
