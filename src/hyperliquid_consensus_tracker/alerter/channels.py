"""Delivery channels for formatted alerts."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from hyperliquid_consensus_tracker.alerter.models import DeliveryResult, FormattedAlert

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
DEFAULT_TELEGRAM_TIMEOUT_SECONDS = 10.0


class AlertChannel(Protocol):
    """A destination that can deliver formatted alerts."""

    name: str

    async def send(self, alert: FormattedAlert) -> list[DeliveryResult]: ...


def parse_chat_ids(raw: str | list[str] | None) -> list[str]:
    """Split a comma-separated chat id list, dropping blanks."""
    if not raw:
        return []
    items = raw.split(",") if isinstance(raw, str) else raw
    return [item.strip() for item in items if item and item.strip()]


class TelegramChannel:
    """Posts alerts to one or more Telegram chats through the Bot API."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_ids: str | list[str],
        *,
        api_url: str = TELEGRAM_API_URL,
        timeout_seconds: float = DEFAULT_TELEGRAM_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            bot_token: Telegram bot token.
            chat_ids: Chat or channel ids, as a list or comma-separated string.
            api_url: Bot API base URL.
            timeout_seconds: Per-request timeout.
            http_client: Optional shared client (tests inject a mock transport).
        """
        self._bot_token = bot_token
        self.chat_ids = parse_chat_ids(chat_ids)
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token) and bool(self.chat_ids)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _send_to(self, chat_id: str, alert: FormattedAlert) -> DeliveryResult:
        url = f"{self._api_url}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": alert.telegram_markdown,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            response = await self._get_client().post(url, json=payload)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Telegram send to %s failed for %s: %s", chat_id, alert.signal_id, e)
            return DeliveryResult(channel=self.name, destination=chat_id, success=False, error=str(e))

        if not isinstance(body, dict):
            body = {}

        if response.status_code == 200 and body.get("ok"):
            logger.info("Telegram message sent to %s for signal %s", chat_id, alert.signal_id)
            return DeliveryResult(channel=self.name, destination=chat_id, success=True)

        error = str(body.get("description") or f"HTTP {response.status_code}")
        logger.error("Telegram rejected message to %s for %s: %s", chat_id, alert.signal_id, error)
        return DeliveryResult(channel=self.name, destination=chat_id, success=False, error=error)

    async def send(self, alert: FormattedAlert) -> list[DeliveryResult]:
        """Send ``alert`` to every configured chat, one at a time."""
        if not self.is_configured:
            logger.info(
                "Telegram settings are not configured. Skipping notification for signal %s.",
                alert.signal_id,
            )
            return []
        return [await self._send_to(chat_id, alert) for chat_id in self.chat_ids]

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
