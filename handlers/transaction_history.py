"""
User Transaction History Handler
Recent transfers with page-by-page navigation
"""

import logging

from telegram import LinkPreviewOptions, Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes

from config import Config
from utils.access_control import get_services, require_login
from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import safe_telegram_handler
from utils.formatting import format_transaction_history
from utils.keyboards import pagination_keyboard

logger = logging.getLogger(__name__)

PAGE_PREFIX = "tx_page_"


async def _show_page(update: Update, context: ContextTypes.DEFAULT_TYPE, page: int) -> None:
    user_id = update.effective_user.id
    limit = Config.TRANSACTIONS_PAGE_SIZE
    transactions = await get_services(context).transfers.get_transactions(user_id, page=page, limit=limit)

    if not transactions and page > 1:
        text = "No more transactions."
    else:
        text = format_transaction_history(transactions, context.bot.username)
        if transactions:
            text += f"\n\nPage {page}"
    await reply_or_edit(
        update,
        text,
        reply_markup=pagination_keyboard(page, has_next=len(transactions) == limit, prefix=PAGE_PREFIX),
        parse_mode="Markdown",
        link_preview_options=LinkPreviewOptions(is_disabled=True),
    )


@safe_telegram_handler
@require_login
async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)
    await _show_page(update, context, 1)


@safe_telegram_handler
@require_login
async def history_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await safe_answer_callback_query(query)
    try:
        page = max(1, int(query.data[len(PAGE_PREFIX):]))
    except ValueError:
        page = 1
    await _show_page(update, context, page)


def register_history_handlers(application) -> None:
    application.add_handler(CommandHandler(["history", "transactions"], history_command))
    application.add_handler(CallbackQueryHandler(history_command, pattern="^history$"))
    application.add_handler(CallbackQueryHandler(history_page, pattern=f"^{PAGE_PREFIX}\\d+$"))
    logger.info("Transaction history handlers registered successfully")
