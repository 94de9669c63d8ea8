"""OpenAI extraction provider.

Uses the chat completions API with native JSON mode
(``response_format={"type": "json_object"}``). OpenAI-compatible endpoints are
supported through the configured base URL.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

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


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI API provider implementation.

    Authentication is via Bearer token (API key).
    """

    name = "openai"

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
                    "response_format": {"type": "json_object"},
                },
                config=config,
            )
            content = self._extract_content(data)
            result = build_result(config, content, data, started)
            LOGGER.debug("OpenAI extraction finished in %.0f ms", result.latency_ms)
            return result

    @staticmethod
    def _get_headers(config: ProviderConfig) -> Dict[str, str]:
        """Build HTTP headers for OpenAI requests."""
        return {
            "Authorization": f"Bearer {config.credentials}",
            "Content-Type": "application/json",
        }

    def _extract_content(self, data: Mapping[str, Any]) -> str:
        """Return the reply text (handles string, list-of-parts, or legacy text field)."""
        content = ""
        choices = data.get("choices") or []
        if choices and isinstance(choices[0], Mapping):
            primary = choices[0]
            message = primary.get("message") or {}
            message_content = message.get("content") if isinstance(message, Mapping) else None
            if isinstance(message_content, str):
                content = message_content
            elif isinstance(message_content, list):
                parts: List[str] = [
                    part["text"]
                    for part in message_content
                    if isinstance(part, Mapping) and isinstance(part.get("text"), str)
                ]
                content = "".join(parts).strip()
            if not content and isinstance(primary.get("text"), str):
                content = primary["text"]

            if not content:
                LOGGER.warning(
                    "OpenAI completion returned empty content; finish_reason=%s",
                    primary.get("finish_reason"),
                )

        if not content.strip():
            raise ProviderError.transient(
                "Invalid response format from provider: missing message content",
                self.name,
                {"response_keys": sorted(data)},
            )
        return content
