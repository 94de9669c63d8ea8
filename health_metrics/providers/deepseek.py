"""DeepSeek extraction provider.

DeepSeek exposes an OpenAI-compatible chat completions API authenticated with a
Bearer token.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional

from ..errors import ProviderError
from ..models import ProviderConfig, RawExtractionResult
from .base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    SYSTEM_PROMPT,
    ExtractionProvider,
    build_extraction_prompt,
    build_result,
    clean_text_for_processing,
    post_json,
    provider_errors,
)

LOGGER = logging.getLogger(__name__)


class DeepseekExtractionProvider(ExtractionProvider):
    """DeepSeek chat completions provider."""

    name = "deepseek"

    def extract(
        self,
        raw_input: str,
        config: ProviderConfig,
        hints: Optional[Mapping[str, Any]] = None,
    ) -> RawExtractionResult:
        with provider_errors(self.name):
            started = time.perf_counter()
            prompt = build_extraction_prompt(clean_text_for_processing(raw_input), hints)
            data = post_json(
                f"{config.endpoint}/chat/completions",
                headers=self._get_headers(config),
                payload={
                    "model": config.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    "temperature": DEFAULT_TEMPERATURE,
                    "max_tokens": DEFAULT_MAX_TOKENS,
                    "stream": False,
                },
                config=config,
            )
            content = _message_content(data, self.name)
            result = build_result(config, content, data, started)
            LOGGER.debug("DeepSeek extraction finished in %.0f ms", result.latency_ms)
            return result

    @staticmethod
    def _get_headers(config: ProviderConfig) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {config.credentials}",
            "Content-Type": "application/json",
        }


def _message_content(data: Mapping[str, Any], provider_name: str) -> str:
    """Return ``choices[0].message.content`` from a chat completions response."""
    choices = data.get("choices") or []
    if choices and isinstance(choices[0], Mapping):
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, Mapping) else None
        if isinstance(content, str) and content.strip():
            return content
    raise ProviderError.transient(
        "Invalid response format from provider: missing message content",
        provider_name,
        {"response_keys": sorted(data)},
    )
