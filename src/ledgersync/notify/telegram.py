"""
Operator notifications over Telegram.

Best-effort: a failed send is logged and swallowed so that a Telegram outage
never blocks a sync request. The in-app TaskNotification row is the record
of truth; Telegram is only a nudge.
"""
import logging
from typing import Iterable, Optional

from telegram import Bot
from telegram.error import TelegramError

from ledgersync.config import get_settings

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends plain-text messages to operators who have a chat id."""

    def __init__(self, bot: Optional[Bot] = None, token: Optional[str] = None):
        """
        Args:
            bot: Pre-built telegram.Bot (tests pass an AsyncMock).
            token: Bot token; defaults to TELEGRAM_BOT_TOKEN. Without either,
                   the notifier is disabled and every send is a no-op.
        """
        if bot is None:
            token = token if token is not None else get_settings().telegram_bot_token
            bot = Bot(token=token) if token else None
        self._bot = bot

    @property
    def enabled(self) -> bool:
        return self._bot is not None

    async def send(self, chat_id: int, text: str) -> bool:
        """Send one message. Returns True on success."""
        if self._bot is None:
            return False
        try:
            await self._bot.send_message(chat_id=chat_id, text=text)
            return True
        except TelegramError as exc:
            logger.warning("Telegram notification to %s failed: %s", chat_id, exc)
            return False

    async def broadcast(self, chat_ids: Iterable[int], text: str) -> int:
        """Send `text` to every chat id. Returns how many sends succeeded."""
        sent = 0
        for chat_id in chat_ids:
            if await self.send(chat_id, text):
                sent += 1
        return sent
