"""Tests for deposit alerts: payload shapes, dedup, relays and the thread bridge"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.notification_relay import (
    DepositNotifier,
    PusherRelay,
    RelayRegistry,
    normalize_deposit_payload,
)

from conftest import FakeRelay

NESTED = {"amount": "25", "currency": "USDC", "metadata": {"network": "137", "txHash": "0xhash1"}}
FLAT = {"amount": "25", "currency": "USDC", "network": "8453", "transactionId": "tx-flat"}


@pytest.fixture
def notifications():
    service = MagicMock()
    service.send_notification = AsyncMock(return_value=True)
    return service


@pytest.fixture
def notifier(kv_store, notifications):
    return DepositNotifier(kv_store, notifications, dedup_ttl_seconds=3600)


class TestNormalizeDepositPayload:

    def test_nested_shape(self):
        event = normalize_deposit_payload(NESTED)
        assert (event.network, event.tx_hash) == ("137", "0xhash1")

    def test_flat_shape(self):
        event = normalize_deposit_payload(FLAT)
        assert (event.network, event.tx_hash) == ("8453", "tx-flat")

    def test_json_string(self):
        assert normalize_deposit_payload('{"amount": 1, "currency": "USDC", "network": "137", "txHash": "h"}').amount == "1"

    @pytest.mark.parametrize("payload", [
        {"currency": "USDC", "network": "137", "transactionId": "t"},
        {"amount": "1", "network": "137", "transactionId": "t"},
        {"amount": "1", "currency": "USDC", "transactionId": "t"},
        {"amount": "1", "currency": "USDC", "network": "137"},
        "not json",
        None,
    ])
    def test_incomplete_payload_is_dropped(self, payload):
        assert normalize_deposit_payload(payload) is None


class TestDepositNotifier:

    @pytest.mark.asyncio
    async def test_delivers_formatted_message(self, notifier, notifications):
        assert await notifier.on_deposit_event(1, NESTED) is True

        user_id, message = notifications.send_notification.await_args.args
        assert user_id == 1
        assert "New Deposit Received" in message
        assert "Polygon" in message
        assert "`0xhash1`" in message

    @pytest.mark.asyncio
    async def test_same_hash_delivered_once_within_window(self, notifier, notifications):
        assert await notifier.on_deposit_event(1, NESTED) is True
        assert await notifier.on_deposit_event(1, NESTED) is False
        assert notifications.send_notification.await_count == 1

    @pytest.mark.asyncio
    async def test_dedup_is_per_user(self, notifier, notifications):
        await notifier.on_deposit_event(1, NESTED)
        await notifier.on_deposit_event(2, NESTED)
        assert notifications.send_notification.await_count == 2

    @pytest.mark.asyncio
    async def test_redelivered_after_window(self, notifier, notifications, clock):
        await notifier.on_deposit_event(1, NESTED)
        clock.advance(3600)
        assert await notifier.on_deposit_event(1, NESTED) is True
        assert notifications.send_notification.await_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_deliver_once(self, notifier, notifications):
        results = await asyncio.gather(*(notifier.on_deposit_event(1, NESTED) for _ in range(5)))
        assert results.count(True) == 1
        assert notifications.send_notification.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_releases_mark(self, notifier, notifications, kv_store):
        notifications.send_notification.return_value = False

        assert await notifier.on_deposit_event(1, NESTED) is False
        assert await kv_store.exists(notifier.dedup_key(1, "0xhash1")) == 0

        notifications.send_notification.return_value = True
        assert await notifier.on_deposit_event(1, NESTED) is True

    @pytest.mark.asyncio
    async def test_incomplete_event_sends_nothing(self, notifier, notifications):
        assert await notifier.on_deposit_event(1, {"amount": "1"}) is False
        notifications.send_notification.assert_not_awaited()


class TestRelayRegistry:

    @pytest.mark.asyncio
    async def test_replace_tears_down_previous_relay(self, notifier):
        FakeRelay.instances = []
        registry = RelayRegistry(notifier, FakeRelay)

        first = await registry.replace(1, "org-a", "token-a")
        second = await registry.replace(1, "org-b", "token-b")

        assert first.connected is False
        assert second.connected is True
        assert registry.get(1) is second

    @pytest.mark.asyncio
    async def test_destroy_and_destroy_all(self, notifier):
        registry = RelayRegistry(notifier, FakeRelay)
        relay_one = await registry.replace(1, "org-a", "t")
        relay_two = await registry.replace(2, "org-b", "t")

        assert registry.destroy(1) is True
        assert registry.destroy(1) is False
        registry.destroy_all()

        assert not relay_one.connected and not relay_two.connected
        assert registry.get(2) is None

    @pytest.mark.asyncio
    async def test_simulate_deposit(self, notifier, notifications):
        registry = RelayRegistry(notifier, FakeRelay)
        assert await registry.simulate_deposit(1, "137") is None

        await registry.replace(1, "org-a", "t")
        assert await registry.simulate_deposit(1, "137", amount="10") is True
        assert "(SIMULATED)" in notifications.send_notification.await_args.args[1]

        # Each simulation has its own id, so none is deduplicated away
        assert await registry.simulate_deposit(1, "137", amount="10") is True


class TestPusherRelay:

    @pytest.mark.asyncio
    async def test_subscribes_to_both_channel_variants(self):
        with patch("services.notification_relay.pysher.Pusher") as pusher_cls:
            relay = PusherRelay(1, "org-1", "token", AsyncMock(), asyncio.get_running_loop(), app_key="key", cluster="ap1", auth_endpoint="https://api/pusher/auth")
            relay.connect()
            relay._on_connected(None)

        pusher = pusher_cls.return_value
        assert pusher_cls.call_args.kwargs["auth_endpoint_headers"] == {"Authorization": "Bearer token"}
        pusher.connect.assert_called_once()
        assert [call.args[0] for call in pusher.subscribe.call_args_list] == ["org-org-1", "private-org-org-1"]
        pusher.subscribe.return_value.bind.assert_called_with("deposit", relay._on_deposit)
        assert relay.connected is True

    @pytest.mark.asyncio
    async def test_thread_events_run_on_the_bot_loop(self):
        delivered = asyncio.Event()
        seen = {}

        async def handler(user_id, data):
            seen["loop"] = asyncio.get_running_loop()
            seen["args"] = (user_id, data)
            delivered.set()
            return True

        loop = asyncio.get_running_loop()
        with patch("services.notification_relay.pysher.Pusher"):
            relay = PusherRelay(7, "org-1", "token", handler, loop, app_key="key", cluster="ap1", auth_endpoint="https://api/pusher/auth")

        await asyncio.to_thread(relay._on_deposit, FLAT)
        await asyncio.wait_for(delivered.wait(), timeout=2)

        assert seen["loop"] is loop
        assert seen["args"] == (7, FLAT)

    @pytest.mark.asyncio
    async def test_disconnect(self):
        with patch("services.notification_relay.pysher.Pusher") as pusher_cls:
            relay = PusherRelay(1, "org-1", "token", AsyncMock(), asyncio.get_running_loop(), app_key="key", cluster="ap1", auth_endpoint="https://api/pusher/auth")
            relay.disconnect()

        pusher_cls.return_value.disconnect.assert_called_once()
        assert relay.connected is False
