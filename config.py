"""Configuration management for the USDC Wallet Bot"""

import os
import logging
from decimal import Decimal
from typing import Dict, Tuple

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower().strip() in ("true", "1", "t")


class Config:
    """Application configuration"""

    # Bot Token Configuration
    # Priority: TELEGRAM_BOT_TOKEN > Generic fallback
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
    GENERIC_BOT_TOKEN = os.getenv("BOT_TOKEN")  # Legacy fallback
    BOT_TOKEN = TELEGRAM_BOT_TOKEN or GENERIC_BOT_TOKEN

    DEBUG = _env_flag("DEBUG")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

    # Remote wallet API
    API_BASE_URL = os.getenv("COPPERX_API_BASE_URL", "https://income-api.copperx.io").rstrip("/")
    API_TIMEOUT_SECONDS = int(os.getenv("API_TIMEOUT_SECONDS", "30"))

    # Real-time notifications (Pusher protocol)
    PUSHER_APP_KEY = os.getenv("PUSHER_KEY", "e089376087cac1a62785")
    PUSHER_CLUSTER = os.getenv("PUSHER_CLUSTER", "ap1")
    PUSHER_AUTH_PATH = "/api/notifications/auth"

    # Optional durable store; process memory is used when unset or unreachable
    REDIS_URL = os.getenv("REDIS_URL")

    # Webhook mode is enabled only when WEBHOOK_URL is set
    WEBHOOK_URL = os.getenv("WEBHOOK_URL")
    WEBHOOK_SECRET_PATH = os.getenv("WEBHOOK_SECRET_PATH", "/webhook")
    WEBHOOK_PORT = int(os.getenv("PORT", "8080"))

    # Session lifecycle
    TOKEN_DEFAULT_LIFETIME_SECONDS = 24 * 60 * 60
    TOKEN_REFRESH_SKEW_SECONDS = 5 * 60
    OTP_EXPIRY_SECONDS = int(os.getenv("OTP_EXPIRY_SECONDS", "300"))
    OTP_MAX_RETRIES = int(os.getenv("OTP_MAX_RETRIES", "3"))

    # Deposit notifications are delivered once per (user, txHash) within this window
    DEPOSIT_DEDUP_TTL_SECONDS = 60 * 60

    # Money movement
    AMOUNT_SCALE = Decimal(10) ** 8
    MIN_TRANSFER_AMOUNT = Decimal("0.1")
    # Whole-number digits accepted in an amount; keeps amount * 10^8 exact
    MAX_AMOUNT_INTEGER_DIGITS = 15
    PURPOSE_CODE = "self"
    DEFAULT_CURRENCY = "USDC"
    DEFAULT_WITHDRAWAL_COUNTRY = "vnm"
    TRANSACTIONS_PAGE_SIZE = 10

    # Per-user, per-path fixed windows: path -> (limit, window seconds)
    RATE_LIMITS: Dict[str, Tuple[int, int]] = {
        "/api/auth/email-otp/request": (5, 60),
        "/api/auth/email-otp/authenticate": (10, 60),
        "/api/transfers/send": (20, 60),
    }
    DEFAULT_RATE_LIMIT: Tuple[int, int] = (50, 60)

    NETWORK_NAMES = {
        "137": "Polygon",
        "42161": "Arbitrum One",
        "8453": "Base",
        "23434": "Starknet",
    }

    EMAIL_REGEX = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    @classmethod
    def validate(cls) -> None:
        """Fail fast on settings the bot cannot start without"""
        if not cls.BOT_TOKEN:
            raise ValueError("TELEGRAM_BOT_TOKEN must be set in environment variables")
        if cls.OTP_MAX_RETRIES < 1:
            raise ValueError("OTP_MAX_RETRIES must be at least 1")

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Bot Environment Configuration:")
        logger.info(f"   Debug: {Config.DEBUG}")
        logger.info(f"   API Base URL: {Config.API_BASE_URL}")
        logger.info(f"   Pusher Cluster: {Config.PUSHER_CLUSTER}")

        # Log token source (without revealing the actual token)
        token_source = "TELEGRAM_BOT_TOKEN" if Config.TELEGRAM_BOT_TOKEN else "BOT_TOKEN (fallback)"
        logger.info(f"   Token Source: {token_source}")

        if Config.REDIS_URL:
            redis_host = Config.REDIS_URL.split("@")[-1]
            logger.info(f"   💾 Store: Redis ({redis_host})")
        else:
            logger.warning("   ⚠️ Store: in-memory (REDIS_URL not set, sessions are lost on restart)")

        if Config.WEBHOOK_URL:
            logger.info(f"   🔗 Mode: webhook ({Config.WEBHOOK_URL}{Config.WEBHOOK_SECRET_PATH})")
        else:
            logger.info("   🔄 Mode: long polling")
