"""/start and /help"""

import logging

from telegram import Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes

from config import Config
from utils.access_control import get_services, require_login
from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import safe_telegram_handler
from utils.formatting import format_transaction_details
from utils.keyboards import main_menu_keyboard
from utils.markdown_escaping import escape_markdown

logger = logging.getLogger(__name__)

TX_DEEP_LINK_PREFIX = "tx_"

HELP_TEXT = (
    "*Available Commands*\n\n"
    "/login - Log in with your email\n"
    "/balance - Show wallet balances\n"
    "/deposit - Show deposit addresses\n"
    "/send - Send USDC to an email, a wallet or several payees\n"
    "/withdraw - Withdraw USDC to your bank account\n"
    "/payees - Manage saved payees\n"
    "/history - Recent transactions\n"
    "/profile - Your account details\n"
    "/kyc - KYC verification status\n"
    "/cancel - Cancel the current operation\n"
    "/logout - Log out"
)


@safe_telegram_handler
async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    if not user:
        return
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)

    # Deep link from the history view: /start tx_<id>
    if context.args and context.args[0].startswith(TX_DEEP_LINK_PREFIX):
        await show_transaction(update, context, context.args[0][len(TX_DEEP_LINK_PREFIX):])
        return

    logged_in = await get_services(context).auth.is_logged_in(user.id)
    name = escape_markdown(user.first_name or "there")
    if logged_in:
        intro = "You are logged in. What would you like to do?"
    else:
        intro = "Log in with your Copperx account email to get started."
    await reply_or_edit(
        update,
        f"👋 Welcome, {name}!\n\n"
        "I help you manage your Copperx USDC wallet: check balances, deposit, "
        f"send and withdraw funds right from Telegram.\n\n{intro}",
        reply_markup=main_menu_keyboard(logged_in),
        parse_mode="Markdown",
    )
    logger.info(f"👋 START: user={user.id} logged_in={logged_in}")


@require_login
async def show_transaction(update: Update, context: ContextTypes.DEFAULT_TYPE, tx_id: str) -> None:
    transaction = await get_services(context).transfers.get_transaction(update.effective_user.id, tx_id)
    await reply_or_edit(update, format_transaction_details(transaction), parse_mode="Markdown")


@safe_telegram_handler
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)
    text = HELP_TEXT
    if Config.DEBUG:
        text += "\n/test\\_deposit - Simulate a deposit notification"
    await reply_or_edit(update, text, parse_mode="Markdown")


def register_start_handlers(application) -> None:
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CallbackQueryHandler(start_command, pattern="^main_menu$"))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CallbackQueryHandler(help_command, pattern="^help$"))
    logger.info("Start handlers registered successfully")
