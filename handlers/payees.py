"""
Payee handlers: list, add (via payee-add-scene) and delete with confirmation
"""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import CallbackQueryHandler, CommandHandler, ContextTypes

from handlers.scene_integration import enter_scene
from scenes.payee import PayeeAddScene
from utils.access_control import get_services, require_login
from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import AuthExpired, NotAuthenticated, WalletBotError, safe_telegram_handler
from utils.formatting import format_payee_list
from utils.keyboards import confirm_keyboard, payee_list_keyboard, retry_keyboard
from utils.markdown_escaping import escape_markdown

logger = logging.getLogger(__name__)

DELETE_PREFIX = "delete_payee_"
DELETE_CONFIRM_PREFIX = "delete_payee_confirm_"


async def _render_payee_list(update: Update, context: ContextTypes.DEFAULT_TYPE, notice: str = "") -> None:
    user_id = update.effective_user.id
    try:
        payees = await get_services(context).payees.list_payees(user_id)
    except (NotAuthenticated, AuthExpired):
        raise
    except WalletBotError as e:
        logger.warning(f"Payee list failed for user {user_id}: {e.message}")
        await reply_or_edit(
            update,
            f"{notice}❌ Couldn't load your payees: {e.message}",
            reply_markup=retry_keyboard("payees"),
        )
        return
    await reply_or_edit(
        update,
        f"{notice}{format_payee_list(payees)}",
        reply_markup=payee_list_keyboard(bool(payees)),
        parse_mode="Markdown",
    )


@safe_telegram_handler
@require_login
async def payees_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/payees, the menu button, and back_to_payee_list"""
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)
    await _render_payee_list(update, context)


@safe_telegram_handler
@require_login
async def add_payee(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await enter_scene(update, context, PayeeAddScene.scene_id)


@safe_telegram_handler
@require_login
async def choose_payee_to_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_answer_callback_query(update.callback_query)
    payees = await get_services(context).payees.list_payees(update.effective_user.id)
    if not payees:
        await _render_payee_list(update, context)
        return

    rows = [[InlineKeyboardButton(f"🗑️ {payee.label}", callback_data=f"{DELETE_PREFIX}{payee.id}")] for payee in payees]
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data="back_to_payee_list")])
    await reply_or_edit(update, "Select the payee to delete:", reply_markup=InlineKeyboardMarkup(rows))


@safe_telegram_handler
@require_login
async def confirm_payee_deletion(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await safe_answer_callback_query(query)
    payee_id = query.data[len(DELETE_PREFIX):]

    payee = await get_services(context).payees.get_payee(update.effective_user.id, payee_id)
    label = escape_markdown(f"{payee.label} ({payee.email})") if payee else "this payee"
    await reply_or_edit(
        update,
        f"Are you sure you want to delete {label}?",
        reply_markup=confirm_keyboard(f"{DELETE_CONFIRM_PREFIX}{payee_id}", "back_to_payee_list", "🗑️ Delete", "⬅️ Back"),
        parse_mode="Markdown",
    )


@safe_telegram_handler
@require_login
async def delete_payee(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await safe_answer_callback_query(query)
    payee_id = query.data[len(DELETE_CONFIRM_PREFIX):]

    await get_services(context).payees.delete_payee(update.effective_user.id, payee_id)
    await _render_payee_list(update, context, "✅ Payee deleted.\n\n")


def register_payee_handlers(application) -> None:
    application.add_handler(CommandHandler("payees", payees_command))
    application.add_handler(CallbackQueryHandler(payees_command, pattern="^(payees|back_to_payee_list)$"))
    application.add_handler(CallbackQueryHandler(add_payee, pattern="^add_payee$"))
    application.add_handler(CallbackQueryHandler(choose_payee_to_delete, pattern="^delete_payee$"))
    # Confirm first: its prefix also matches the generic delete pattern
    application.add_handler(CallbackQueryHandler(delete_payee, pattern=f"^{DELETE_CONFIRM_PREFIX}"))
    application.add_handler(CallbackQueryHandler(confirm_payee_deletion, pattern=f"^{DELETE_PREFIX}"))
    logger.info("Payee handlers registered successfully")
