from unittest.mock import AsyncMock

from telegram.error import TelegramError

from ledgersync.notify.telegram import TelegramNotifier


async def test_disabled_without_token():
    notifier = TelegramNotifier(token="")
    assert not notifier.enabled
    assert await notifier.send(1, "hello") is False


async def test_send():
    bot = AsyncMock()
    notifier = TelegramNotifier(bot=bot)

    assert await notifier.send(42, "hello") is True
    bot.send_message.assert_awaited_once_with(chat_id=42, text="hello")


async def test_broadcast_counts_successes():
    bot = AsyncMock()
    bot.send_message.side_effect = [None, TelegramError("blocked"), None]
    notifier = TelegramNotifier(bot=bot)

    assert await notifier.broadcast([1, 2, 3], "hi") == 2
    assert bot.send_message.await_count == 3
