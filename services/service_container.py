"""
Service Container - composition root

Builds every service once and wires their dependencies explicitly. ``main``
stores the container in ``application.bot_data["services"]``; handlers and
scenes reach services only through it.
"""

import logging
from typing import Optional

from telegram import Bot

from config import Config
from services.api_gateway import ApiGateway
from services.auth_service import AuthService
from services.credential_store import CredentialStore
from services.kv_store import KeyValueStore, create_kv_store
from services.kyc_service import KycService
from services.notification_relay import DepositNotifier, PusherRelay, RelayRegistry
from services.payee_service import PayeeService
from services.profile_service import ProfileService
from services.rate_limiter import ApiRateLimiter
from services.scene_engine import SceneEngine
from services.telegram_notification_service import TelegramNotificationService
from services.transfer_service import TransferService
from services.wallet_service import WalletService

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(self, bot: Bot, store: Optional[KeyValueStore] = None, relay_factory=None):
        self.store = store or create_kv_store(Config.REDIS_URL)
        self.credentials = CredentialStore(self.store)
        self.rate_limiter = ApiRateLimiter()
        self.gateway = ApiGateway(self.credentials, self.rate_limiter)

        self.auth = AuthService(self.gateway, self.credentials)
        self.credentials.set_refresher(self.auth.refresh_access_token)
        self.profile = ProfileService(self.gateway)
        self.kyc = KycService(self.gateway)
        self.wallets = WalletService(self.gateway)
        self.payees = PayeeService(self.gateway)
        self.transfers = TransferService(self.gateway)

        self.notifications = TelegramNotificationService(bot)
        self.notifier = DepositNotifier(self.store, self.notifications)
        self.relays = RelayRegistry(self.notifier, relay_factory or PusherRelay)

        self.scene_engine = SceneEngine(self)

    def register_scenes(self, scenes) -> None:
        for scene in scenes:
            self.scene_engine.register_scene(scene)

    async def start(self) -> None:
        if not await self.store.ping():
            logger.warning("⚠️ Key-value store did not answer PING")
        await self.gateway.start()
        logger.info("✅ Services started")

    async def shutdown(self) -> None:
        self.relays.destroy_all()
        await self.gateway.close()
        await self.store.close()
        logger.info("✅ Services stopped")
