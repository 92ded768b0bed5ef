from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional, Protocol

import aiohttp

from app.core.errors import DeliveryFailure

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = os.getenv("TELEGRAM_API_URL", "https://api.telegram.org")
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
_HTTP_TIMEOUT_SECONDS = 10

# Transport errors, timeouts and undecodable bodies all mean "not delivered"
_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ValueError)


class MessageSender(Protocol):
    async def send_text(self, chat_id: int, text: str) -> None: ...


class TelegramSender:
    """Plain-text ``sendMessage`` and voice download over the Telegram Bot API."""

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        token: Optional[str] = None,
        base_url: str = TELEGRAM_API_URL,
    ) -> None:
        self._http = http_session
        self._token = token or TELEGRAM_BOT_TOKEN
        self._base_url = base_url.rstrip("/")
        if not self._token:
            raise ValueError("TELEGRAM_BOT_TOKEN is not configured")

    def _url(self, method: str) -> str:
        return f"{self._base_url}/bot{self._token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self._base_url}/file/bot{self._token}/{file_path}"

    async def _call(self, method: str, body: dict[str, Any]) -> Any:
        try:
            async with self._http.post(
                self._url(method),
                json=body,
                timeout=aiohttp.ClientTimeout(total=_HTTP_TIMEOUT_SECONDS),
            ) as response:
                payload: dict[str, Any] = await response.json(content_type=None)
        except _TRANSPORT_ERRORS as exc:
            logger.error("%s failed: %s", method, exc)
            raise DeliveryFailure(f"{method} failed: {type(exc).__name__}") from exc

        if response.status >= 400 or not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description", "unknown error") if isinstance(payload, dict) else payload
            logger.error("%s rejected (HTTP %s): %s", method, response.status, description)
            raise DeliveryFailure(f"{method} rejected: {description}")
        return payload.get("result")

    async def send_text(self, chat_id: int, text: str) -> None:
        await self._call("sendMessage", {"chat_id": chat_id, "text": text})
        logger.debug("Message delivered to chat %s", chat_id)

    async def download_file(self, file_id: str) -> bytes:
        """Resolve *file_id* with ``getFile`` and fetch the file contents."""
        result = await self._call("getFile", {"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise DeliveryFailure(f"getFile returned no file_path for {file_id}")
        try:
            async with self._http.get(
                self._file_url(file_path),
                timeout=aiohttp.ClientTimeout(total=_HTTP_TIMEOUT_SECONDS),
            ) as response:
                if response.status >= 400:
                    raise DeliveryFailure(f"file download rejected (HTTP {response.status})")
                return await response.read()
        except _TRANSPORT_ERRORS as exc:
            logger.error("Download of %s failed: %s", file_path, exc)
            raise DeliveryFailure(f"file download failed: {type(exc).__name__}") from exc
