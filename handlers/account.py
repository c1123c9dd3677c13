"""
Account handlers: profile, KYC status, logout and the debug-only deposit simulator
"""

import logging

from telegram import Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes

from config import Config
from utils.access_control import get_services, require_login
from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import safe_telegram_handler
from utils.formatting import format_kyc_status, format_profile
from utils.keyboards import confirm_keyboard, main_menu_keyboard

logger = logging.getLogger(__name__)

DEFAULT_SIMULATED_NETWORK = "137"


async def _answer(update: Update) -> None:
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)


@safe_telegram_handler
@require_login
async def profile_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _answer(update)
    profile = await get_services(context).profile.get_profile(update.effective_user.id)
    await reply_or_edit(update, format_profile(profile), parse_mode="Markdown")


@safe_telegram_handler
@require_login
async def kyc_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _answer(update)
    record = await get_services(context).kyc.get_latest_record(update.effective_user.id)
    await reply_or_edit(update, format_kyc_status(record), parse_mode="Markdown")


@safe_telegram_handler
@require_login
async def logout_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _answer(update)
    await reply_or_edit(
        update,
        "Are you sure you want to log out?",
        reply_markup=confirm_keyboard("confirm_logout", "cancel_logout", "✅ Yes, log out", "❌ No"),
    )


@safe_telegram_handler
async def confirm_logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _answer(update)
    user_id = update.effective_user.id
    services = get_services(context)

    services.relays.destroy(user_id)
    await services.auth.logout(user_id)
    await reply_or_edit(
        update,
        "👋 You have been logged out. Use /login to log in again.",
        reply_markup=main_menu_keyboard(logged_in=False),
    )


@safe_telegram_handler
async def cancel_logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _answer(update)
    await reply_or_edit(update, "Logout cancelled. You are still logged in.")


@safe_telegram_handler
@require_login
async def test_deposit_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Feed a synthetic deposit through the user's relay (DEBUG only)"""
    user_id = update.effective_user.id
    services = get_services(context)

    wallet = await services.wallets.get_default_wallet(user_id)
    network = wallet.network if wallet else DEFAULT_SIMULATED_NETWORK
    delivered = await services.relays.simulate_deposit(user_id, network)

    if delivered is None:
        await reply_or_edit(update, "❌ No active notification connection. Please /login again to reconnect.")
    elif not delivered:
        await reply_or_edit(update, "⚠️ The simulated deposit was not delivered. Check the logs for details.")
    else:
        logger.info(f"🧪 TEST_DEPOSIT: delivered simulated deposit to user {user_id} on {network}")


def register_account_handlers(application) -> None:
    application.add_handler(CommandHandler("profile", profile_command))
    application.add_handler(CallbackQueryHandler(profile_command, pattern="^profile$"))
    application.add_handler(CommandHandler("kyc", kyc_command))
    application.add_handler(CallbackQueryHandler(kyc_command, pattern="^kyc$"))
    application.add_handler(CommandHandler("logout", logout_command))
    application.add_handler(CallbackQueryHandler(logout_command, pattern="^logout$"))
    application.add_handler(CallbackQueryHandler(confirm_logout, pattern="^confirm_logout$"))
    application.add_handler(CallbackQueryHandler(cancel_logout, pattern="^cancel_logout$"))
    if Config.DEBUG:
        application.add_handler(CommandHandler("test_deposit", test_deposit_command))
        logger.warning("🧪 DEBUG mode: /test_deposit enabled")
    logger.info("Account handlers registered successfully")
