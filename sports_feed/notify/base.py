"""Notification message type and the sink interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx

from ..errors import ApiError


@dataclass
class Notification:
    """A rendered message ready to send.

    Attributes:
        subject: Short headline, used as email subject and embed title
        body: Plain-text body
        html: Optional HTML body for sinks that support it
        story_ids: Stories covered by the message
        link: Optional link for sinks that render one
    """

    subject: str
    body: str
    html: str | None = None
    story_ids: list[str] = field(default_factory=list)
    link: str | None = None


class Notifier(ABC):
    """A delivery sink. ``notify`` raises on failure so callers can retry."""

    name: str = "notifier"

    @abstractmethod
    async def notify(self, message: Notification) -> None:
        raise NotImplementedError


async def post_json(
    client: httpx.AsyncClient | None,
    url: str,
    payload: dict,
    timeout: float,
    service: str,
) -> httpx.Response:
    """POST a JSON payload, raising ApiError on a non-2xx answer."""
    if client is not None:
        resp = await client.post(url, json=payload, timeout=timeout)
    else:
        async with httpx.AsyncClient(timeout=timeout) as owned:
            resp = await owned.post(url, json=payload)
    if resp.status_code >= 400:
        raise ApiError.from_response(resp, service)
    return resp
