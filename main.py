#!/usr/bin/env python3
"""
USDC Wallet Bot - startup

Deterministic startup sequence:
1. load .env and configure logging
2. validate configuration
3. build the Telegram application and the service container
4. register scenes, handlers and the global error handler
5. run in webhook mode when WEBHOOK_URL is set, long polling otherwise
"""

import os
import sys
import logging

# Load .env before config reads the environment
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))

from telegram import Update  # noqa: E402
from telegram.ext import Application, ContextTypes  # noqa: E402

from config import Config  # noqa: E402

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('apscheduler').setLevel(logging.WARNING)
logging.getLogger('telegram.ext').setLevel(logging.WARNING)

from handlers.account import register_account_handlers  # noqa: E402
from handlers.payees import register_payee_handlers  # noqa: E402
from handlers.scene_integration import register_scene_handlers  # noqa: E402
from handlers.start import register_start_handlers  # noqa: E402
from handlers.transaction_history import register_history_handlers  # noqa: E402
from handlers.wallet import register_wallet_handlers  # noqa: E402
from scenes import all_scenes  # noqa: E402
from services.service_container import ServiceContainer  # noqa: E402

logger = logging.getLogger(__name__)


async def global_error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Last resort for exceptions no handler caught"""
    user_id = update.effective_user.id if isinstance(update, Update) and update.effective_user else None
    logger.error(f"Bot error for user {user_id}: {context.error}", exc_info=context.error)


async def post_init(application: Application) -> None:
    await application.bot_data["services"].start()
    logger.info(f"✅ Bot @{application.bot.username} initialized")


async def post_shutdown(application: Application) -> None:
    services = application.bot_data.get("services")
    if services is not None:
        await services.shutdown()


def register_handlers(application: Application) -> None:
    handler_groups = [
        ("Scene", register_scene_handlers),
        ("Start", register_start_handlers),
        ("Wallet", register_wallet_handlers),
        ("Account", register_account_handlers),
        ("Payee", register_payee_handlers),
        ("History", register_history_handlers),
    ]
    for group_name, register_func in handler_groups:
        register_func(application)
        logger.info(f"✅ {group_name} handlers registered")
    application.add_error_handler(global_error_handler)


def create_application() -> Application:
    Config.validate()
    Config.log_environment_config()

    application = (
        Application.builder()
        .token(Config.BOT_TOKEN)
        .concurrent_updates(True)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    services = ServiceContainer(application.bot)
    services.register_scenes(all_scenes())
    application.bot_data["services"] = services

    register_handlers(application)
    return application


def main() -> None:
    logger.info("🚀 Starting USDC Wallet Bot...")
    application = create_application()

    if Config.WEBHOOK_URL:
        logger.info("🔗 Starting in webhook mode...")
        application.run_webhook(
            listen="0.0.0.0",
            port=Config.WEBHOOK_PORT,
            url_path=Config.WEBHOOK_SECRET_PATH.lstrip("/"),
            webhook_url=f"{Config.WEBHOOK_URL.rstrip('/')}{Config.WEBHOOK_SECRET_PATH}",
            allowed_updates=Update.ALL_TYPES,
        )
    else:
        logger.info("🔄 Starting in polling mode...")
        application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
