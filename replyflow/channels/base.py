"""Common surface of the outbound platform senders.

A sender delivers one text or one image to a recipient on its platform
and raises TransportError for anything that did not go through. It
never retries; the dispatcher logs the failure and moves on.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger("channels")


class TransportError(Exception):
    """A platform send failed (HTTP error status, network fault, bad credentials)."""

    def __init__(self, platform: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"[{platform}] {message}")
        self.platform = platform
        self.status_code = status_code


@dataclass
class SendResult:
    platform_message_id: str | None = None


class PlatformSender(ABC):
    platform: str = ""
    images_first: bool = False
    required_credentials: tuple[str, ...] = ()

    def __init__(
        self,
        credentials: dict[str, Any],
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._transport = transport

    def credential(self, key: str) -> str:
        value = self._credentials.get(key)
        if not value:
            raise TransportError(self.platform, f"missing credential '{key}'")
        return str(value)

    @abstractmethod
    async def send_text(self, recipient: str, text: str) -> SendResult: ...

    @abstractmethod
    async def send_image(self, recipient: str, image_url: str, caption: str | None = None) -> SendResult: ...

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(self.platform, f"request failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.error("%s send failed (%s): %s", self.platform, resp.status_code, resp.text[:500])
            raise TransportError(self.platform, f"HTTP {resp.status_code}", resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
