"""OpenAI-compatible chat completions provider."""

from __future__ import annotations

from typing import Any

from ...config import ProviderConfig
from ...errors import ApiError
from ..prompts import build_rewrite_prompt, system_prompt
from .base import RewriteProvider, RewriteResult


class OpenAICompatibleProvider(RewriteProvider):
    """Rewrites stories through any ``/chat/completions`` endpoint."""

    name = "openai"

    def __init__(self, cfg: ProviderConfig, api_key: str | None, client=None):
        if not api_key:
            raise ValueError("Missing API key for OpenAI-compatible provider")
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
            "model": self.cfg.model,
            "messages": [
                {"role": "system", "content": system_prompt()},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.cfg.max_tokens,
            "temperature": self.cfg.temperature,
            "top_p": 0.9,
        }
        url = f"{self.cfg.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data = await self._post(url, payload, headers=headers)
        content = _extract_text(data).strip()
        tokens = int((data.get("usage") or {}).get("total_tokens") or 0)
        if not content:
            self._log_response(style, "empty", "", tokens)
            raise ApiError(502, "Empty response from model", self.name)
        self._log_response(style, "ok", content, tokens)
        return RewriteResult(text=content, tokens=tokens, style=style, model=self.cfg.model)


def _extract_text(data: dict[str, Any]) -> str:
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        return ""
