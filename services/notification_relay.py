"""
Notification Relay - real-time deposit alerts over the Pusher protocol

One ``PusherRelay`` per logged-in user listens for ``deposit`` events on the
user's organization channels (``org-<id>`` and ``private-org-<id>``). pysher
runs its websocket on a background thread; every event is handed back to the
bot's event loop with ``asyncio.run_coroutine_threadsafe`` before any store or
Telegram call is made.

Delivery goes through ``DepositNotifier``, which delivers each
(user, transaction hash) pair at most once per dedup window. The same event
arriving on both channel variants is therefore shown once. A failed send
releases the dedup mark so an upstream redelivery can still get through.

``RelayRegistry`` owns the user -> relay map; logins replace a user's relay,
logouts and shutdown destroy them.
"""

import json
import uuid
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pysher

from config import Config
from services.kv_store import KeyValueStore
from services.telegram_notification_service import TelegramNotificationService
from utils.data_sanitizer import sanitize_for_log
from utils.formatting import format_deposit_notification

logger = logging.getLogger(__name__)

DEPOSIT_EVENT = "deposit"


@dataclass
class DepositEvent:
    amount: str
    currency: str
    network: str
    tx_hash: str
    simulated: bool = False


def normalize_deposit_payload(payload: Any) -> Optional[DepositEvent]:
    """
    Resolve both payload shapes into a ``DepositEvent``:

        {amount, currency, metadata: {network, txHash}}
        {amount, currency, network, transactionId}

    Returns None when any of amount, currency, network or hash is missing.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            logger.warning(f"Dropping non-JSON deposit payload: {payload!r:.200}")
            return None
    if not isinstance(payload, dict):
        return None

    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    amount = payload.get("amount")
    currency = payload.get("currency")
    network = metadata.get("network") or payload.get("network")
    tx_hash = metadata.get("txHash") or payload.get("txHash") or payload.get("transactionId")

    if amount in (None, "") or not currency or not network or not tx_hash:
        return None
    return DepositEvent(
        amount=str(amount),
        currency=str(currency),
        network=str(network),
        tx_hash=str(tx_hash),
        simulated=bool(payload.get("simulated")),
    )


class DepositNotifier:
    """Dedup and delivery of deposit events"""

    KEY_PREFIX = "deposit_seen:"

    def __init__(
        self,
        store: KeyValueStore,
        notifications: TelegramNotificationService,
        dedup_ttl_seconds: int = Config.DEPOSIT_DEDUP_TTL_SECONDS,
    ):
        self.store = store
        self.notifications = notifications
        self.dedup_ttl_seconds = dedup_ttl_seconds
        self._mark_lock = asyncio.Lock()

    def dedup_key(self, user_id: int, tx_hash: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}:{tx_hash}"

    async def _mark_seen(self, key: str) -> bool:
        """Set the marker; False when it was already present"""
        async with self._mark_lock:
            if await self.store.exists(key):
                return False
            await self.store.set(key, "1", ex=self.dedup_ttl_seconds)
            return True

    async def on_deposit_event(self, user_id: int, payload: Any) -> bool:
        """Returns True when a chat message was delivered"""
        event = normalize_deposit_payload(payload)
        if event is None:
            logger.warning(f"⚠️ DEPOSIT_DROPPED: user={user_id} missing fields: {sanitize_for_log(payload)}")
            return False

        key = self.dedup_key(user_id, event.tx_hash)
        if not await self._mark_seen(key):
            logger.info(f"🔁 DEPOSIT_DUPLICATE: user={user_id} tx={event.tx_hash}")
            return False

        delivered = await self.notifications.send_notification(user_id, format_deposit_notification(event))
        if not delivered:
            await self.store.delete(key)
            logger.warning(f"❌ DEPOSIT_DELIVERY_FAILED: user={user_id} tx={event.tx_hash}, dedup mark released")
            return False

        logger.info(f"💰 DEPOSIT_DELIVERED: user={user_id} tx={event.tx_hash} amount={event.amount} {event.currency}")
        return True


class PusherRelay:
    """pysher connection bound to one (user, organization) pair"""

    def __init__(
        self,
        user_id: int,
        organization_id: str,
        access_token: str,
        handler: Callable[[int, Any], Awaitable[bool]],
        loop: asyncio.AbstractEventLoop,
        app_key: str = Config.PUSHER_APP_KEY,
        cluster: str = Config.PUSHER_CLUSTER,
        auth_endpoint: str = f"{Config.API_BASE_URL}{Config.PUSHER_AUTH_PATH}",
    ):
        self.user_id = user_id
        self.organization_id = organization_id
        self._handler = handler
        self._loop = loop
        self._pusher = pysher.Pusher(
            app_key,
            cluster=cluster,
            auth_endpoint=auth_endpoint,
            auth_endpoint_headers={"Authorization": f"Bearer {access_token}"},
        )
        self.connected = False

    @property
    def channel_names(self) -> List[str]:
        return [f"org-{self.organization_id}", f"private-org-{self.organization_id}"]

    def connect(self) -> None:
        self._pusher.connection.bind("pusher:connection_established", self._on_connected)
        self._pusher.connect()
        logger.info(f"📡 PUSHER_CONNECTING: user={self.user_id} org={self.organization_id}")

    def _on_connected(self, data: Any) -> None:
        # pysher thread
        self.connected = True
        for name in self.channel_names:
            channel = self._pusher.subscribe(name)
            channel.bind(DEPOSIT_EVENT, self._on_deposit)
            logger.info(f"Subscribed to {name} for user {self.user_id}")

    def _on_deposit(self, data: Any) -> None:
        # pysher thread
        if self._loop.is_closed():
            logger.warning(f"Deposit event for user {self.user_id} after loop shutdown, dropped")
            return
        future = asyncio.run_coroutine_threadsafe(self.handle_payload(data), self._loop)
        future.add_done_callback(self._log_failure)

    def _log_failure(self, future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"❌ DEPOSIT_HANDLER_ERROR: user={self.user_id}: {future.exception()!r}")

    async def handle_payload(self, data: Any) -> bool:
        logger.info(f"📥 DEPOSIT_EVENT: user={self.user_id} org={self.organization_id}")
        return await self._handler(self.user_id, data)

    def disconnect(self) -> None:
        self.connected = False
        self._pusher.disconnect()
        logger.info(f"📡 PUSHER_DISCONNECTED: user={self.user_id}")


class RelayRegistry:
    """The only owner of per-user relays"""

    def __init__(self, notifier: DepositNotifier, relay_factory: Callable[..., PusherRelay] = PusherRelay):
        self.notifier = notifier
        self._relay_factory = relay_factory
        self._relays: Dict[int, PusherRelay] = {}

    def get(self, user_id: int) -> Optional[PusherRelay]:
        return self._relays.get(user_id)

    async def replace(self, user_id: int, organization_id: str, access_token: str) -> PusherRelay:
        """Tear down any relay for the user and connect a new one"""
        self.destroy(user_id)
        relay = self._relay_factory(
            user_id,
            organization_id,
            access_token,
            self.notifier.on_deposit_event,
            asyncio.get_running_loop(),
        )
        relay.connect()
        self._relays[user_id] = relay
        return relay

    def destroy(self, user_id: int) -> bool:
        relay = self._relays.pop(user_id, None)
        if relay is None:
            return False
        relay.disconnect()
        return True

    def destroy_all(self) -> None:
        for user_id in list(self._relays):
            self.destroy(user_id)

    async def simulate_deposit(
        self, user_id: int, network: str, amount: str = "10", currency: str = Config.DEFAULT_CURRENCY
    ) -> Optional[bool]:
        """
        Feed a synthetic deposit through the user's relay.

        Returns None when the user has no relay, else whether it was delivered.
        """
        relay = self._relays.get(user_id)
        if relay is None:
            return None
        payload = {
            "amount": amount,
            "currency": currency,
            "network": network,
            "transactionId": f"sim_{uuid.uuid4().hex}",
            "simulated": True,
        }
        return await relay.handle_payload(payload)
