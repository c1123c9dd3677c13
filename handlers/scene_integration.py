"""
Scene Engine Handler Integration

Routes every update through the Scene Engine before the regular handlers.
The router runs in handler group -1: when the chat's active scene consumes an
update it raises ``ApplicationHandlerStop`` so no command or button handler
sees it; otherwise the update falls through to the regular handlers.

Also hosts the commands that enter scenes (/login, /send, /withdraw) and the
/cancel fallback for chats without an active scene.
"""

import logging

from telegram import Update
from telegram.ext import (
    ApplicationHandlerStop,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    TypeHandler,
)

from scenes.login import LoginScene
from scenes.transfer import TransferScene
from scenes.withdrawal import WithdrawalScene
from services.scene_engine import CANCEL_ACTION
from utils.access_control import get_services, require_login
from utils.callback_utils import reply_or_edit, safe_answer_callback_query
from utils.exception_handler import safe_telegram_handler

logger = logging.getLogger(__name__)

SCENE_ROUTER_GROUP = -1


async def route_to_scene(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Give the chat's active scene the first look at every update"""
    engine = get_services(context).scene_engine
    if await engine.handle_update(update, context):
        raise ApplicationHandlerStop


async def enter_scene(update: Update, context: ContextTypes.DEFAULT_TYPE, scene_id: str, data=None) -> None:
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)
    await get_services(context).scene_engine.enter(
        scene_id, update.effective_chat.id, update.effective_user.id, context.bot, data
    )


@safe_telegram_handler
async def login_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    if not user:
        return

    if await get_services(context).auth.is_logged_in(user.id):
        if update.callback_query:
            await safe_answer_callback_query(update.callback_query)
        await reply_or_edit(update, "✅ You are already logged in. Use /logout first to switch accounts.")
        return

    await enter_scene(update, context, LoginScene.scene_id)


@safe_telegram_handler
@require_login
async def send_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await enter_scene(update, context, TransferScene.scene_id)


@safe_telegram_handler
@require_login
async def withdraw_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await enter_scene(update, context, WithdrawalScene.scene_id)


@safe_telegram_handler
async def cancel_without_scene(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/cancel or a Cancel button when the chat has nothing open"""
    if update.callback_query:
        await safe_answer_callback_query(update.callback_query)
    await reply_or_edit(update, "There is nothing to cancel.")


def register_scene_handlers(application) -> None:
    """Register the scene router and the scene entry commands"""
    application.add_handler(TypeHandler(Update, route_to_scene), group=SCENE_ROUTER_GROUP)

    application.add_handler(CommandHandler("login", login_command))
    application.add_handler(CallbackQueryHandler(login_command, pattern="^login$"))
    application.add_handler(CommandHandler(["send", "transfer"], send_command))
    application.add_handler(CallbackQueryHandler(send_command, pattern="^send$"))
    application.add_handler(CommandHandler("withdraw", withdraw_command))
    application.add_handler(CallbackQueryHandler(withdraw_command, pattern="^withdraw$"))
    application.add_handler(CommandHandler("cancel", cancel_without_scene))
    application.add_handler(CallbackQueryHandler(cancel_without_scene, pattern=f"^{CANCEL_ACTION}$"))

    logger.info("Scene handlers registered successfully")
