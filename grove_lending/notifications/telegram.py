"""Telegram delivery for lending alerts and activity logs."""
import asyncio
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Alerts go to the unmuted alert bot, activity to the log bot."""

    def __init__(self, config: TelegramConfig, timeout_seconds: float = 10.0) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @staticmethod
    def render(message: str, subject: str = "") -> str:
        """HTML-escape *message* for parse_mode=HTML, with *subject* as a bold header."""
        body = html.escape(message, quote=False)
        if subject:
            body = f"<b>{html.escape(subject, quote=False)}</b>\n\n{body}"
        return body[:MAX_MESSAGE_LENGTH]

    async def _post(self, text: str, bot_token: str, silent: bool) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_notification": silent,
        }
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(
                connector=connector, timeout=self._timeout
            ) as session:
                async with session.post(
                    API_URL.format(token=bot_token), json=payload
                ) as response:
                    if response.status != 200:
                        logger.error("Telegram API returned HTTP %s", response.status)
                        return False
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error("Telegram request failed: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        sent = await self._post(self.render(message, subject), self.alert_bot_token, silent=False)
        if sent:
            logger.info("Telegram alert sent: %s", subject or "(no subject)")
        return sent

    async def send_log(self, message: str, silent: bool = True) -> bool:
        sent = await self._post(self.render(message), self.log_bot_token, silent=silent)
        if sent:
            logger.debug("Telegram log sent")
        return sent
