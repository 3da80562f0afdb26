"""
Telegram Bot API transport for approval prompts.

Covers only the calls the approval exchange needs: sendMessage with an inline
keyboard, editMessageText, answerCallbackQuery, and getUpdates with an offset
cursor. Wraps an ``httpx.AsyncClient``; pass one in to share connections or to
mock the API in tests.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


class TelegramError(RuntimeError):
    """Bot API call failed (transport error or ``ok: false``)."""


class TelegramTransport:
    """Minimal async Bot API client."""

    def __init__(
        self,
        bot_token: str,
        *,
        client: httpx.AsyncClient | None = None,
        api_base: str = API_BASE,
        timeout: float = 15.0,
    ) -> None:
        self._base = f"{api_base.rstrip('/')}/bot{bot_token}"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> TelegramTransport:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _call(
        self, method: str, payload: dict[str, Any], *, timeout: float | None = None
    ) -> Any:
        try:
            kwargs: dict[str, Any] = {"json": payload}
            if timeout is not None:
                kwargs["timeout"] = timeout
            resp = await self._client.post(f"{self._base}/{method}", **kwargs)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            # never include the URL: it carries the bot token
            raise TelegramError(f"{method} failed: {type(e).__name__}") from None
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            raise TelegramError(f"{method} failed: {description or 'unknown error'}")
        return data.get("result")

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        buttons: list[tuple[str, str]] | None = None,
        parse_mode: str = "HTML",
    ) -> int:
        """Send ``text`` with one row of (label, callback_data) buttons. Returns message id."""
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": parse_mode}
        if buttons:
            payload["reply_markup"] = {
                "inline_keyboard": [
                    [{"text": label, "callback_data": data} for label, data in buttons]
                ]
            }
        result = await self._call("sendMessage", payload)
        try:
            return int(result["message_id"])
        except (TypeError, KeyError, ValueError):
            raise TelegramError("sendMessage returned no message_id") from None

    async def edit_message_text(
        self, chat_id: str, message_id: int, text: str, *, parse_mode: str = "HTML"
    ) -> None:
        await self._call(
            "editMessageText",
            {"chat_id": chat_id, "message_id": message_id, "text": text, "parse_mode": parse_mode},
        )

    async def answer_callback_query(self, callback_query_id: str, text: str = "") -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": callback_query_id, "text": text})

    async def get_updates(
        self,
        *,
        offset: int | None = None,
        timeout: int = 10,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Long-poll for updates. ``timeout`` is the server-side wait in seconds."""
        payload: dict[str, Any] = {"timeout": timeout}
        if offset is not None:
            payload["offset"] = offset
        if allowed_updates is not None:
            payload["allowed_updates"] = allowed_updates
        result = await self._call("getUpdates", payload, timeout=timeout + 5)
        return list(result or [])
