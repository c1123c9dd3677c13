"""
Direct Telegram Notification Service

Pushes unsolicited messages (deposit alerts) to a user's private chat,
outside of any conversation the user may have open.
"""

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from utils.callback_utils import truncate_message

logger = logging.getLogger(__name__)


class TelegramNotificationService:
    """Sends notifications through the application's bot"""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_notification(self, user_id: int, message: str, parse_mode: str = ParseMode.MARKDOWN) -> bool:
        """
        Send immediate Telegram notification to user.

        Args:
            user_id: Telegram user id; private chats share the user's id
            message: Text message to send

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await self.bot.send_message(chat_id=user_id, text=truncate_message(message), parse_mode=parse_mode)
            logger.info(f"✅ TELEGRAM_SENT: user={user_id}")
            return True
        except TelegramError as e:
            logger.error(f"❌ TELEGRAM_ERROR: user={user_id}, error={e}")
            return False
