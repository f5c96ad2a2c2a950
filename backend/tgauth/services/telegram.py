"""Outbound Telegram Bot API messaging."""
from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)


class TelegramMessenger:
    """Send text messages to a chat. Delivery failures are logged, never raised."""

    def __init__(
        self,
        bot_token: str | None,
        *,
        bot_username: str | None = None,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
    ) -> None:
        self.bot_token = bot_token
        self.bot_username = bot_username
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)

    def send_message(self, chat_id: str, text: str) -> bool:
        if not self.bot_token:
            return False

        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        try:
            response = requests.post(
                url,
                json={"chat_id": chat_id, "text": text},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Telegram delivery to chat %s failed: %s", chat_id, type(exc).__name__)
            return False

        if response.status_code == 200:
            return True
        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning("Telegram rate limited delivery to chat %s (retry_after=%s)", chat_id, retry_after)
        elif response.status_code == 403:
            logger.warning("Telegram bot blocked by chat %s", chat_id)
        else:
            logger.warning("Telegram delivery to chat %s failed: HTTP_%s", chat_id, response.status_code)
        return False

    def build_deep_link(self, token: str) -> str | None:
        """``https://t.me/<bot>?start=<token>`` when the bot username is known."""
        if not self.bot_username:
            return None
        return f"https://t.me/{self.bot_username}?start={token}"


def _retry_after(response: requests.Response) -> int | None:
    try:
        return response.json().get("parameters", {}).get("retry_after")
    except ValueError:
        return None
