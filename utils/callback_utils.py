"""
Utility functions for answering callbacks and editing messages safely.

Editing a prompt can fail for many ordinary reasons (message deleted, too old,
media message, identical content). None of those may crash a flow: callers
either treat the edit as a no-op or fall back to sending a fresh message and
re-anchor on its id.
"""

import logging
from typing import Optional

from telegram import Update
from telegram.error import BadRequest, TelegramError

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram's limits"""
    if len(text) <= max_length:
        return text
    return text[: max_length - 50] + "...\n\n📄 Message truncated due to length"


def _is_not_modified(error: Exception) -> bool:
    return "message is not modified" in str(error).lower()


async def safe_answer_callback_query(query, text: Optional[str] = None, show_alert: bool = False):
    """
    Answer callback query immediately so the client removes its loading spinner.

    Failures (query too old, already answered) are logged and ignored; button
    handling continues regardless.
    """
    if not query:
        return

    user_id = query.from_user.id if query.from_user else 0
    try:
        if text:
            await query.answer(text, show_alert=show_alert)
        else:
            await query.answer()
    except TelegramError as answer_error:
        error_msg = str(answer_error).lower()
        if "too old" in error_msg or "timeout" in error_msg or "expired" in error_msg:
            logger.warning(f"Callback timeout for user {user_id}: {answer_error}")
        else:
            logger.debug(f"Callback answer failed (non-critical): {answer_error}")


async def safe_edit_message_text(query, text: str, **kwargs) -> bool:
    """
    Safely edit the message a callback query belongs to.

    Returns True when the message shows ``text`` afterwards (including the
    "message is not modified" no-op), False when the edit was impossible.
    """
    if not query or not getattr(query, "message", None):
        logger.debug("safe_edit_message_text: query.message is None or missing - cannot edit message text")
        return False

    try:
        await query.edit_message_text(truncate_message(text), **kwargs)
        return True
    except BadRequest as e:
        if _is_not_modified(e):
            logger.debug(f"Message {query.message.message_id} content unchanged - no update needed")
            return True
        logger.debug(f"Ignoring failed message edit: {e}")
        return False
    except TelegramError as e:
        logger.warning(f"Failed to edit message: {e}")
        return False


async def edit_or_send(bot, chat_id: int, message_id: Optional[int], text: str, **kwargs) -> int:
    """
    Edit ``message_id`` in place, or send a new message when that is impossible.

    Returns the id of the message now showing ``text`` so callers can re-anchor.
    Errors from the fallback send propagate: at that point the chat itself is
    unreachable.
    """
    text = truncate_message(text)
    if message_id is not None:
        try:
            await bot.edit_message_text(text, chat_id=chat_id, message_id=message_id, **kwargs)
            return message_id
        except BadRequest as e:
            if _is_not_modified(e):
                return message_id
            logger.info(f"✏️ EDIT_FALLBACK: chat={chat_id} message={message_id} error={e}")
        except TelegramError as e:
            logger.warning(f"✏️ EDIT_FALLBACK: chat={chat_id} message={message_id} error={e}")

    message = await bot.send_message(chat_id=chat_id, text=text, **kwargs)
    return message.message_id


async def reply_or_edit(update: Update, text: str, **kwargs) -> None:
    """
    Answer an update in place: edit the pressed button's message for callback
    queries, otherwise reply to the incoming message.
    """
    query = update.callback_query
    if query is not None:
        if await safe_edit_message_text(query, text, **kwargs):
            return
        if query.message is not None:
            await query.message.reply_text(truncate_message(text), **kwargs)
            return

    message = update.effective_message
    if message is not None:
        await message.reply_text(truncate_message(text), **kwargs)
    elif update.effective_chat is not None:
        logger.debug(f"reply_or_edit: no message to reply to in chat {update.effective_chat.id}")
