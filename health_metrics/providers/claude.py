"""Claude (Anthropic Messages API) extraction provider."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional

from .. import config as app_config
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


class ClaudeExtractionProvider(ExtractionProvider):
    """Anthropic Messages API provider.

    Authentication uses the ``x-api-key`` header; the API version header comes
    from ``config.options["anthropic_version"]``.
    """

    name = "claude"

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
                f"{config.endpoint}/messages",
                headers=self._get_headers(config),
                payload={
                    "model": config.model,
                    "max_tokens": DEFAULT_MAX_TOKENS,
                    "temperature": DEFAULT_TEMPERATURE,
                    "system": SYSTEM_PROMPT,
                    "messages": [{"role": "user", "content": prompt}],
                },
                config=config,
            )
            content = self._text_content(data)
            result = build_result(config, content, data, started)
            LOGGER.debug(
                "Claude extraction finished in %.0f ms (stop_reason=%s)",
                result.latency_ms,
                data.get("stop_reason"),
            )
            return result

    @staticmethod
    def _get_headers(config: ProviderConfig) -> Dict[str, str]:
        return {
            "x-api-key": config.credentials,
            "anthropic-version": str(
                config.options.get("anthropic_version") or app_config.DEFAULT_ANTHROPIC_VERSION
            ),
            "Content-Type": "application/json",
        }

    def _text_content(self, data: Mapping[str, Any]) -> str:
        """Join the text blocks of a Messages API response."""
        blocks = data.get("content") or []
        parts = [
            block["text"]
            for block in blocks
            if isinstance(block, Mapping) and isinstance(block.get("text"), str)
        ]
        content = "".join(parts).strip()
        if not content:
            raise ProviderError.transient(
                "Invalid response format from provider: missing text content",
                self.name,
                {"response_keys": sorted(data)},
            )
        return content
