"""Extraction provider implementations."""

from .base import ExtractionProvider
from .claude import ClaudeExtractionProvider
from .deepseek import DeepseekExtractionProvider
from .openai import OpenAIExtractionProvider

__all__ = [
    "ExtractionProvider",
    "ClaudeExtractionProvider",
    "DeepseekExtractionProvider",
    "OpenAIExtractionProvider",
]
