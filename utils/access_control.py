"""
Access control for command and button handlers.

Handlers never reach services through globals: ``get_services`` reads the
container ``main`` placed in ``bot_data``.
"""

import logging
from functools import wraps

from telegram import Update
from telegram.ext import ContextTypes

from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import LOGIN_KEYBOARD

logger = logging.getLogger(__name__)

LOGIN_REQUIRED_TEXT = "🔒 You need to log in first. Use /login or tap the button below."


def get_services(context: ContextTypes.DEFAULT_TYPE):
    return context.application.bot_data["services"]


def require_login(func):
    """Decorator to require a usable session token for handler functions"""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        user = update.effective_user
        if not user:
            return None

        if not await get_services(context).auth.is_logged_in(user.id):
            logger.info(f"🔒 LOGIN_REQUIRED: user={user.id} handler={func.__name__}")
            if update.callback_query:
                await safe_answer_callback_query(update.callback_query)
            await reply_or_edit(update, LOGIN_REQUIRED_TEXT, reply_markup=LOGIN_KEYBOARD)
            return None

        return await func(update, context, *args, **kwargs)

    return wrapper
