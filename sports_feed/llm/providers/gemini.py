"""Google Gemini provider for story rewriting."""

from __future__ import annotations

from typing import Any

from ...config import ProviderConfig
from ...errors import ApiError
from ..prompts import build_rewrite_prompt, system_prompt
from .base import RewriteProvider, RewriteResult


class GeminiProvider(RewriteProvider):
    """Gemini-backed rewrite provider using ``generateContent``."""

    name = "gemini"

    def __init__(self, cfg: ProviderConfig, api_key: str | None, client=None):
        if not api_key:
            raise ValueError("Missing Google API key")
        super().__init__(cfg, api_key, client)

    async def rewrite(
        self,
        text: str,
        style: str,
        target_length: str | None = None,
        language: str = "English",
    ) -> RewriteResult:
        prompt = build_rewrite_prompt(text, style, target_length, language)
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt()}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.cfg.temperature,
                "maxOutputTokens": self.cfg.max_tokens,
            },
        }
        url = f"{self.cfg.base_url.rstrip('/')}/v1beta/models/{self.cfg.model}:generateContent"
        data = await self._post(url, payload, params={"key": self.api_key})
        content = _extract_text(data).strip()
        tokens = int((data.get("usageMetadata") or {}).get("totalTokenCount") or 0)
        if not content:
            self._log_response(style, "empty", "", tokens)
            raise ApiError(502, "Empty response from model", self.name)
        self._log_response(style, "ok", content, tokens)
        return RewriteResult(text=content, tokens=tokens, style=style, model=self.cfg.model)


def _extract_text(data: dict[str, Any]) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return ""
