"""
Wallet handlers: balances, default wallet and deposit addresses
"""

import logging

from telegram import Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes

from utils.access_control import get_services, require_login
from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import safe_telegram_handler
from utils.formatting import format_deposit_address, format_wallet_balances, get_network_name, qr_code_url
from utils.keyboards import back_keyboard, balance_keyboard, deposit_networks_keyboard

logger = logging.getLogger(__name__)


async def _answer(update: Update) -> None:
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)


@safe_telegram_handler
@require_login
async def balance_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _answer(update)
    user_id = update.effective_user.id
    overview = await get_services(context).wallets.get_overview(user_id)
    await reply_or_edit(
        update,
        format_wallet_balances(overview),
        reply_markup=balance_keyboard(overview.wallets),
        parse_mode="Markdown",
    )


@safe_telegram_handler
@require_login
async def set_default_wallet(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await safe_answer_callback_query(query)
    wallet_id = query.data[len("set_default_"):]
    services = get_services(context)
    user_id = update.effective_user.id

    await services.wallets.set_default_wallet(user_id, wallet_id)
    overview = await services.wallets.get_overview(user_id)
    default = overview.default_wallet
    network = get_network_name(default.network) if default else "selected"
    await reply_or_edit(
        update,
        f"✅ Default wallet set to {network}.\n\n{format_wallet_balances(overview)}",
        reply_markup=balance_keyboard(overview.wallets),
        parse_mode="Markdown",
    )


@safe_telegram_handler
@require_login
async def deposit_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Network picker for deposit addresses (also serves back_to_deposit)"""
    await _answer(update)
    wallets = await get_services(context).wallets.get_wallets(update.effective_user.id)
    if not wallets:
        await reply_or_edit(update, "You don't have any wallets yet.")
        return
    await reply_or_edit(
        update,
        "📥 *Deposit USDC*\n\nSelect the network you want to deposit on:",
        reply_markup=deposit_networks_keyboard(wallets),
        parse_mode="Markdown",
    )


@safe_telegram_handler
@require_login
async def deposit_network(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await safe_answer_callback_query(query)
    network = query.data[len("deposit_"):]

    address = await get_services(context).wallets.get_deposit_address(update.effective_user.id, network)
    if not address:
        await reply_or_edit(
            update,
            f"❌ No deposit address found for {get_network_name(network)}.",
            reply_markup=back_keyboard("back_to_deposit"),
        )
        return

    await reply_or_edit(
        update,
        f"{format_deposit_address(network, address)}\n\n[QR Code]({qr_code_url(address)})",
        reply_markup=back_keyboard("back_to_deposit"),
        parse_mode="Markdown",
    )


def register_wallet_handlers(application) -> None:
    application.add_handler(CommandHandler("balance", balance_command))
    application.add_handler(CallbackQueryHandler(balance_command, pattern="^balance$"))
    application.add_handler(CallbackQueryHandler(set_default_wallet, pattern="^set_default_"))
    application.add_handler(CommandHandler("deposit", deposit_command))
    application.add_handler(CallbackQueryHandler(deposit_command, pattern="^(deposit|back_to_deposit)$"))
    application.add_handler(CallbackQueryHandler(deposit_network, pattern="^deposit_"))
    logger.info("Wallet handlers registered successfully")
