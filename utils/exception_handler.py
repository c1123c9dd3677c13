"""
Exception Handler Module
Provides the bot's exception taxonomy and error handling decorators
"""

import logging
import functools
from typing import Any, Callable, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from utils.callback_utils import reply_or_edit

logger = logging.getLogger(__name__)


class WalletBotError(Exception):
    """Base class for errors that carry a user-presentable message"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotAuthenticated(WalletBotError):
    """No usable session token for the user"""

    def __init__(self, message: str = "You need to log in first."):
        super().__init__(message)


class RateLimited(WalletBotError):
    """Per-user request budget for an endpoint is exhausted"""

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__(
            message or f"Rate limit exceeded. Please try again in {self.retry_after} seconds."
        )


class ValidationError(WalletBotError):
    """Custom validation error for input validation failures"""


class RemoteApiError(WalletBotError):
    """Non-2xx response or transport failure talking to the wallet API"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthExpired(RemoteApiError):
    """The API rejected the session (HTTP 401); credentials have been cleared"""

    def __init__(self, message: str = "Your session has expired. Please log in again with /login."):
        super().__init__(message, status_code=401)


class OtpSessionError(WalletBotError):
    """OTP session missing, mismatched or exhausted; a fresh OTP is required"""


LOGIN_KEYBOARD = InlineKeyboardMarkup([[InlineKeyboardButton("Login", callback_data="login")]])


def describe_error(error: Exception) -> str:
    """Plain-language text for an error, used by handlers and scenes alike"""
    if isinstance(error, (NotAuthenticated, AuthExpired)):
        return f"🔒 {error.message}"
    if isinstance(error, RateLimited):
        return f"⏳ {error.message}"
    if isinstance(error, ValidationError):
        return f"❌ {error.message}"
    if isinstance(error, WalletBotError):
        return f"❌ Error: {error.message}\n\nPlease try again or contact support."
    return "❌ Something went wrong. Please try again later."


def safe_telegram_handler(func: Callable) -> Callable:
    """
    Decorator to safely handle telegram handler functions.

    Known wallet errors are turned into a chat reply (with a Login button for
    auth failures); anything else is logged without crashing the bot.
    """

    @functools.wraps(func)
    async def wrapper(update, context, *args, **kwargs) -> Any:
        try:
            return await func(update, context, *args, **kwargs)
        except WalletBotError as e:
            logger.warning(f"⚠️ HANDLER_ERROR: {func.__name__}: {type(e).__name__}: {e.message}")
            reply_markup = LOGIN_KEYBOARD if isinstance(e, (NotAuthenticated, AuthExpired)) else None
            await _notify(update, describe_error(e), reply_markup)
        except Exception as e:
            logger.error(f"Error in telegram handler {func.__name__}: {e}")
            logger.error(f"Exception details: {type(e).__name__}: {str(e)}")
            await _notify(update, describe_error(e), None)
        return None

    return wrapper


async def _notify(update, text: str, reply_markup) -> None:
    if update is None:
        return
    try:
        await reply_or_edit(update, text, reply_markup=reply_markup)
    except TelegramError as send_error:
        logger.error(f"❌ TELEGRAM_ERROR: could not report failure to user: {send_error}")
