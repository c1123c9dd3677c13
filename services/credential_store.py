"""
Credential Store - per-user session tokens and organization ids

Tokens live in the injected key-value store under ``token:<user_id>`` with a
TTL equal to their remaining lifetime; the organization id derived from the
profile lives under ``org:<user_id>`` with a TTL never longer than the token's.

Refresh is single-flight per user: concurrent callers that find the same
near-expiry token wait on one lock, and whoever enters second re-reads the
store and reuses the already refreshed token instead of calling the API again.
"""

import json
import math
import time
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from config import Config
from services.kv_store import TTL_MISSING, TTL_PERSISTENT, KeyValueStore
from utils.data_sanitizer import mask_token
from utils.exception_handler import WalletBotError
from utils.keyed_locks import KeyedLockManager

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[str], Awaitable[Dict[str, Any]]]


def parse_expiry(value: Any) -> Optional[float]:
    """Absolute expiry as epoch seconds from an ISO string or a number"""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        # Millisecond timestamps are common in JS-originated payloads
        return value / 1000.0 if value > 1e12 else float(value)
    if isinstance(value, str):
        try:
            return parse_expiry(float(value))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable token expiry: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


class CredentialStore:
    """Token and organization id lifecycle for every chat user"""

    TOKEN_KEY_PREFIX = "token:"
    ORG_KEY_PREFIX = "org:"

    def __init__(
        self,
        store: KeyValueStore,
        refresher: Optional[TokenRefresher] = None,
        clock: Callable[[], float] = time.time,
        refresh_skew_seconds: int = Config.TOKEN_REFRESH_SKEW_SECONDS,
        default_lifetime_seconds: int = Config.TOKEN_DEFAULT_LIFETIME_SECONDS,
    ):
        self._store = store
        self._refresher = refresher
        self._clock = clock
        self.refresh_skew_seconds = refresh_skew_seconds
        self.default_lifetime_seconds = default_lifetime_seconds
        self._refresh_locks = KeyedLockManager()

    def set_refresher(self, refresher: TokenRefresher) -> None:
        self._refresher = refresher

    def _token_key(self, user_id) -> str:
        return f"{self.TOKEN_KEY_PREFIX}{user_id}"

    def _org_key(self, user_id) -> str:
        return f"{self.ORG_KEY_PREFIX}{user_id}"

    def _normalize(self, token_data: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(token_data)
        expires_at = parse_expiry(normalized.get("expiresAt"))
        if expires_at is None:
            expires_in = normalized.get("expiresIn") or self.default_lifetime_seconds
            expires_at = self._clock() + float(expires_in)
        normalized["expiresAt"] = datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat()
        return normalized

    def expires_at(self, token: Dict[str, Any]) -> Optional[float]:
        return parse_expiry(token.get("expiresAt"))

    def needs_refresh(self, token: Dict[str, Any]) -> bool:
        """True when the token is expired or within the refresh skew window"""
        expires_at = self.expires_at(token)
        if expires_at is None:
            return False
        return expires_at - self._clock() <= self.refresh_skew_seconds

    async def _load(self, user_id) -> Optional[Dict[str, Any]]:
        raw = await self._store.get(self._token_key(user_id))
        if not raw:
            return None
        try:
            token = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupt token data for user {user_id}: {e}")
            await self._store.delete(self._token_key(user_id))
            return None
        if not isinstance(token, dict) or not token.get("accessToken"):
            logger.warning(f"Invalid token format for user {user_id}")
            await self._store.delete(self._token_key(user_id))
            return None
        return token

    async def store_token(self, user_id, token_data: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a token, overwriting any previous one for this user"""
        token = self._normalize(token_data)
        ttl = max(1, math.ceil(self.expires_at(token) - self._clock()))
        await self._store.set(self._token_key(user_id), json.dumps(token), ex=ttl)
        logger.info(
            f"🔑 TOKEN_STORED: user={user_id} token={mask_token(token.get('accessToken', ''))} ttl={ttl}s"
        )
        return token

    async def get_token(self, user_id) -> Optional[Dict[str, Any]]:
        """
        Usable token for the user, or None.

        Tokens inside the refresh skew are refreshed first. When the refresh
        fails an expired token is discarded, a still-valid one is returned as is.
        """
        token = await self._load(user_id)
        if token is None:
            return None
        if not self.needs_refresh(token):
            return token

        refreshed = await self.refresh(user_id)
        if refreshed is not None:
            return refreshed

        expires_at = self.expires_at(token)
        if expires_at is not None and expires_at > self._clock():
            return token
        return None

    async def refresh(self, user_id) -> Optional[Dict[str, Any]]:
        """Single-flight refresh of the stored token"""
        async with self._refresh_locks.lock(str(user_id)):
            token = await self._load(user_id)
            if token is None:
                return None
            if not self.needs_refresh(token):
                # Another caller refreshed while we waited
                return token

            expires_at = self.expires_at(token)
            expired = expires_at is not None and expires_at <= self._clock()
            refresh_token = token.get("refreshToken")

            if not refresh_token or self._refresher is None:
                if expired:
                    logger.info(f"Token for user {user_id} has expired and cannot be refreshed")
                    await self.clear_token(user_id)
                return None

            logger.info(f"🔄 TOKEN_REFRESH: user={user_id} expired={expired}")
            try:
                new_token = await self._refresher(refresh_token)
            except WalletBotError as e:
                logger.error(f"❌ TOKEN_REFRESH_FAILED: user={user_id} error={e.message}")
                if expired:
                    await self.clear_token(user_id)
                return None

            if not new_token.get("refreshToken"):
                new_token = {**new_token, "refreshToken": refresh_token}
            return await self.store_token(user_id, new_token)

    async def clear_token(self, user_id) -> None:
        await self._store.delete(self._token_key(user_id))
        logger.info(f"🧹 TOKEN_CLEARED: user={user_id}")

    async def store_organization_id(self, user_id, organization_id: str) -> None:
        token_ttl = await self._store.ttl(self._token_key(user_id))
        if token_ttl == TTL_MISSING:
            logger.warning(f"Not storing organization ID for user {user_id}: no active token")
            return
        ttl = self.default_lifetime_seconds if token_ttl == TTL_PERSISTENT else max(1, token_ttl)
        await self._store.set(self._org_key(user_id), str(organization_id), ex=ttl)
        logger.info(f"Stored organization ID {organization_id} for user {user_id} (ttl={ttl}s)")

    async def get_organization_id(self, user_id) -> Optional[str]:
        return await self._store.get(self._org_key(user_id))

    async def clear_organization_id(self, user_id) -> None:
        await self._store.delete(self._org_key(user_id))

    async def clear_session(self, user_id) -> None:
        """Forget everything held for the user (logout, 401)"""
        await self.clear_token(user_id)
        await self.clear_organization_id(user_id)
