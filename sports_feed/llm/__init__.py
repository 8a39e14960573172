"""LLM story rewriting."""

from .prompts import STYLES, build_rewrite_prompt, fallback_rewrites, originality_score
from .providers.base import RewriteProvider, RewriteResult
from .providers.factory import available_providers, create_provider
from .providers.gemini import GeminiProvider
from .providers.openai_compatible import OpenAICompatibleProvider

__all__ = [
    "RewriteProvider",
    "RewriteResult",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "create_provider",
    "available_providers",
    "STYLES",
    "build_rewrite_prompt",
    "fallback_rewrites",
    "originality_score",
]
