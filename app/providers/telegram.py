"""Async client for the parts of the Telegram Bot API the top-up bot uses."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from ..config import settings
from ..core.topup.replies import Reply

logger = logging.getLogger(__name__)


class TelegramMessenger:
    """Sends orchestrator replies back to Telegram chats."""

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token if token is not None else settings.telegram_bot_token
        self.base_url = (base_url or settings.telegram_api_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=f"{self.base_url}/bot{self.token}",
            timeout=self.timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.post(f"/{method}", json=payload)
            response.raise_for_status()
            return response.json()

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self._call("sendMessage", payload)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return await self._call("answerCallbackQuery", payload)

    async def set_webhook(
        self,
        url: str,
        secret_token: Optional[str] = None,
        drop_pending_updates: bool = False,
    ) -> bool:
        """Point the bot's webhook at ``url``. Returns Telegram's ``ok`` flag."""

        payload: Dict[str, Any] = {
            "url": url,
            "allowed_updates": ["message", "callback_query"],
            "drop_pending_updates": drop_pending_updates,
        }
        if secret_token:
            payload["secret_token"] = secret_token
        result = await self._call("setWebhook", payload)
        return bool(result.get("ok"))

    async def deliver(
        self,
        chat_id: int,
        replies: Iterable[Reply],
        callback_query_id: Optional[str] = None,
    ) -> int:
        """Acknowledge the button press (if any) then send ``replies`` in order.

        Returns the number of messages sent.
        """

        if not self.enabled:
            logger.warning("TELEGRAM_BOT_TOKEN not set, dropping outbound replies")
            return 0

        if callback_query_id:
            await self.answer_callback_query(callback_query_id)

        sent = 0
        for reply in replies:
            await self.send_message(chat_id, reply.text, reply.reply_markup() or None)
            sent += 1
        return sent


_messenger: Optional[TelegramMessenger] = None


def get_telegram_messenger() -> TelegramMessenger:
    """Get singleton Telegram messenger instance."""
    global _messenger
    if _messenger is None:
        _messenger = TelegramMessenger()
    return _messenger
