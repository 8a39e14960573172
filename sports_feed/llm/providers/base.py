"""Abstract interface for LLM-driven story rewriting."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Any

import httpx

from ...config import ProviderConfig
from ...errors import ApiError
from ...logging_utils import log_event, truncate_text


@dataclass
class RewriteResult:
    """A rewritten story variant.

    Attributes:
        text: Rewritten text
        tokens: Total tokens billed for the call (0 when the API does not say)
        style: Style that was requested
        model: Model that produced the text
    """

    text: str
    tokens: int = 0
    style: str = ""
    model: str = ""


class RewriteProvider(ABC):
    """Provider interface for rewriting a story in a given style.

    Implementations raise ``ApiError`` or ``httpx.HTTPError`` on failure so
    the retry coordinator can classify them.
    """

    name: str = "provider"

    def __init__(
        self,
        cfg: ProviderConfig,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.api_key = api_key
        self.client = client
        self.logger = logging.getLogger(f"sports_feed.llm.{self.name}")

    @abstractmethod
    async def rewrite(
        self,
        text: str,
        style: str,
        target_length: str | None = None,
        language: str = "English",
    ) -> RewriteResult:
        """Return the story rewritten in ``style``."""
        raise NotImplementedError

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if self.client is not None:
            resp = await self.client.post(url, json=payload, headers=headers, params=params)
        else:
            async with httpx.AsyncClient(
                timeout=self.cfg.timeout_seconds,
                trust_env=self.cfg.trust_env,
            ) as client:
                resp = await client.post(url, json=payload, headers=headers, params=params)
        if resp.status_code >= 400:
            raise ApiError.from_response(resp, self.name)
        return resp.json()

    def _log_response(self, style: str, status: str, content: str, tokens: int = 0) -> None:
        log_event(
            self.logger,
            "LLM response",
            event="llm_rewrite_response",
            status=status,
            model=self.cfg.model,
            style=style,
            tokens=tokens,
            raw_response=truncate_text(content),
        )
