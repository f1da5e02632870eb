"""Best-effort user notifications.

Messages go to the configured Telegram chats when ``BOT_TOKEN`` and
``ALLOWED_CHAT_IDS`` are set; the bot is used for outbound messages only.
Every message is also logged. Send failures are logged and swallowed.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from telegram import Bot

logger = logging.getLogger(__name__)

_TITLE = "relay-supervisor"


class Notifier:
    def __init__(
        self,
        token: Optional[str] = None,
        chat_ids: Iterable[int] = (),
        bot: Optional[Bot] = None,
    ) -> None:
        self.chat_ids = sorted(set(chat_ids))
        self._bot = bot if bot is not None else (Bot(token) if token else None)
        self._initialized = bot is not None

    @property
    def enabled(self) -> bool:
        return self._bot is not None and bool(self.chat_ids)

    async def notify(self, text: str, *, error: bool = False) -> None:
        if error:
            logger.warning("Notification: %s", text)
        else:
            logger.info("Notification: %s", text)
        if not self.enabled:
            return

        bot = self._bot
        try:
            if not self._initialized:
                await bot.initialize()
                self._initialized = True
        except Exception:
            logger.exception("Telegram bot initialization failed")
            return

        prefix = "⚠️ " if error else "💡 "
        message = f"{prefix}{_TITLE}: {text}"
        for chat_id in self.chat_ids:
            try:
                await bot.send_message(chat_id=chat_id, text=message)
            except Exception:
                logger.exception("Failed sending notification to chat_id=%s", chat_id)

    async def close(self) -> None:
        if self._bot is None or not self._initialized:
            return
        try:
            await self._bot.shutdown()
        except Exception:
            logger.warning("Telegram bot shutdown failed", exc_info=True)
        self._initialized = False
