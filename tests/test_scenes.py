"""
End-to-end conversation tests for the login, transfer, withdrawal and payee
scenes, driven through the scene engine against a fake wallet API.
"""

import json

import pytest

from conftest import TEST_USER_ID, FakeRelay, buttons_of, last_markup, last_text, log_in, sent_texts

EMAIL = "user@example.com"
ADDRESS = "0x" + "c" * 40
PAYEES = {"data": [
    {"id": "p1", "email": "friend@example.com", "nickName": "Pal"},
    {"id": "p2", "email": "other@example.com"},
]}
WALLETS = [
    {"id": "w1", "network": "137", "address": "0x" + "1" * 40, "isDefault": True},
    {"id": "w2", "network": "8453", "walletAddress": "0x" + "2" * 40},
]


async def enter(services, mock_bot, scene_id, data=None):
    return await services.scene_engine.enter(scene_id, TEST_USER_ID, TEST_USER_ID, mock_bot, data)


def active_scene(services):
    return services.scene_engine.get_scene_status(TEST_USER_ID)


class TestLoginScene:

    def _routes(self, fake_api):
        fake_api.add("POST", "/api/auth/email-otp/request", {"sid": "sid-1"})
        fake_api.add("POST", "/api/auth/email-otp/authenticate", {"accessToken": "acc-1", "refreshToken": "ref-1", "expiresIn": 3600})
        fake_api.add("GET", "/api/auth/me", {"firstName": "Ada", "lastName": "L", "organizationId": "org-9"})
        fake_api.add("GET", "/api/kycs", {"data": [{"status": "verified"}]})

    @pytest.mark.asyncio
    async def test_full_login(self, services, fake_api, mock_bot, run_steps):
        self._routes(fake_api)
        await enter(services, mock_bot, "login-scene")

        await run_steps(EMAIL, "123456")

        assert "Login successful" in last_text(mock_bot)
        assert "Welcome, Ada L!" in last_text(mock_bot)
        assert "*KYC Status:* Approved" in last_text(mock_bot)
        assert await services.auth.is_logged_in(TEST_USER_ID)
        assert await services.credentials.get_organization_id(TEST_USER_ID) == "org-9"
        relay = services.relays.get(TEST_USER_ID)
        assert (relay.organization_id, relay.access_token, relay.connected) == ("org-9", "acc-1", True)
        assert active_scene(services) is None

    @pytest.mark.asyncio
    async def test_relogin_replaces_relay(self, services, fake_api, mock_bot, run_steps):
        self._routes(fake_api)
        for _ in range(2):
            await enter(services, mock_bot, "login-scene")
            await run_steps(EMAIL, "123456")

        assert len(FakeRelay.instances) == 2
        assert FakeRelay.instances[0].connected is False
        assert services.relays.get(TEST_USER_ID) is FakeRelay.instances[1]

    @pytest.mark.asyncio
    async def test_invalid_email_keeps_asking(self, services, fake_api, mock_bot, run_steps):
        await enter(services, mock_bot, "login-scene")

        await run_steps("not-an-email")

        assert last_text(mock_bot).startswith("❌ Invalid email format")
        assert active_scene(services)["current_step"] == "email"
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_wrong_code_can_be_retried(self, services, fake_api, mock_bot, run_steps):
        self._routes(fake_api)
        fake_api.add_sequence("POST", "/api/auth/email-otp/authenticate", [
            (400, {"message": "Invalid OTP"}),
            (200, {"accessToken": "acc-1"}),
        ])
        await enter(services, mock_bot, "login-scene")

        await run_steps(EMAIL, "000000")
        assert "Verification failed: Invalid OTP" in last_text(mock_bot)
        assert active_scene(services)["current_step"] == "otp"

        await run_steps("123456")
        assert "Login successful" in last_text(mock_bot)

    @pytest.mark.asyncio
    async def test_malformed_code_is_rejected_locally(self, services, fake_api, mock_bot, run_steps):
        self._routes(fake_api)
        await enter(services, mock_bot, "login-scene")

        await run_steps(EMAIL, "12ab")

        assert "6-digit code" in last_text(mock_bot)
        assert fake_api.calls_to("POST", "/api/auth/email-otp/authenticate") == []

    @pytest.mark.asyncio
    async def test_login_without_organization_skips_relay(self, services, fake_api, mock_bot, run_steps):
        self._routes(fake_api)
        fake_api.add("GET", "/api/auth/me", {"firstName": "Ada"})
        await enter(services, mock_bot, "login-scene")

        await run_steps(EMAIL, "123456")

        assert "Login successful" in last_text(mock_bot)
        assert services.relays.get(TEST_USER_ID) is None


class TestTransferScene:

    @pytest.fixture(autouse=True)
    def routes(self, fake_api):
        fake_api.add("GET", "/api/payees", PAYEES)
        fake_api.add("GET", "/api/wallets", WALLETS)
        fake_api.add("POST", "/api/transfers/send", {"id": "tx-9"})
        fake_api.add("POST", "/api/transfers/wallet-withdraw", {"id": "tx-10"})
        fake_api.add("POST", "/api/transfers/send-batch", {"responses": [{"status": "success"}, {"status": "success"}]})

    @pytest.mark.asyncio
    async def test_send_to_saved_payee(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene")
        assert buttons_of(last_markup(mock_bot))[-1] == "cancel"

        await run_steps("btn:method_email", "btn:payee:p1")
        assert "Sending from: *Polygon*" in last_text(mock_bot)

        await run_steps("btn:wallet:w2", "btn:wallet_continue", "10")
        assert "*Recipient:* Pal" in last_text(mock_bot)

        await run_steps("btn:confirm_transfer")

        assert fake_api.calls_to("POST", "/api/transfers/send")[0].payload == {
            "email": "friend@example.com",
            "amount": "1000000000",
            "purposeCode": "self",
            "currency": "USDC",
            "payeeId": "p1",
            "walletId": "w2",
        }
        assert "Transfer Successful" in last_text(mock_bot)
        assert "`tx-9`" in last_text(mock_bot)
        assert active_scene(services) is None

    @pytest.mark.asyncio
    async def test_typed_email_recipient(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        await run_steps("someone@example.com", "btn:wallet_continue", "0.5", "btn:confirm_transfer")

        payload = fake_api.calls_to("POST", "/api/transfers/send")[0].payload
        assert payload["email"] == "someone@example.com"
        assert payload["walletId"] == "w1"
        assert "payeeId" not in payload

    @pytest.mark.asyncio
    async def test_send_to_wallet_with_wallet_change(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene")

        await run_steps("btn:method_wallet", "0x123")
        assert "Invalid wallet address" in last_text(mock_bot)

        await run_steps(ADDRESS, "btn:wallet_continue", "5")
        assert "*Wallet Address:*" in last_text(mock_bot)

        await run_steps("btn:change_wallet", "btn:wallet:w2", "btn:wallet_continue")
        assert "*From Wallet:* Base" in last_text(mock_bot)

        await run_steps("btn:confirm_transfer")
        payload = fake_api.calls_to("POST", "/api/transfers/wallet-withdraw")[0].payload
        assert payload == {
            "walletAddress": ADDRESS,
            "amount": "500000000",
            "purposeCode": "self",
            "currency": "USDC",
            "walletId": "w2",
        }

    @pytest.mark.asyncio
    async def test_amount_below_minimum_is_rejected(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        await run_steps("btn:payee:p1", "btn:wallet_continue", "0.01")

        assert "at least 0.1 USDC" in last_text(mock_bot)
        assert active_scene(services)["current_step"] == "amount_entry"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["1e30", "99999999999999999999999999999", "1000000000000000"])
    async def test_oversized_amount_asks_again(self, services, fake_api, mock_bot, run_steps, amount):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        await run_steps("btn:payee:p1", "btn:wallet_continue", amount)

        assert "exceeds maximum limit" in last_text(mock_bot)
        assert active_scene(services)["current_step"] == "amount_entry"

        await run_steps("999999999999999.5")
        assert "*Amount:* 999,999,999,999,999.50 USDC" in last_text(mock_bot)

    @pytest.mark.asyncio
    async def test_typed_text_at_wallet_step_asks_for_buttons(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        await run_steps("btn:payee:p1", "Polygon please")

        assert last_text(mock_bot) == "Please use the buttons above to continue."
        assert active_scene(services)["current_step"] == "wallet_pick"

    @pytest.mark.asyncio
    async def test_submit_failure_ends_flow_without_retry(self, services, fake_api, mock_bot, run_steps):
        fake_api.add("POST", "/api/transfers/send", {"message": "Insufficient balance"}, status=400)
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        await run_steps("btn:payee:p1", "btn:wallet_continue", "10", "btn:confirm_transfer")

        assert "Insufficient balance" in last_text(mock_bot)
        assert len(fake_api.calls_to("POST", "/api/transfers/send")) == 1
        assert active_scene(services) is None

    @pytest.mark.asyncio
    async def test_batch_with_individual_amounts(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene")

        await run_steps("btn:method_batch", "btn:batch_continue")
        assert "Please select at least one payee" in last_text(mock_bot)

        await run_steps("btn:batch_toggle:p1", "btn:batch_toggle:p2", "btn:batch_continue", "btn:batch_mode_each", "1", "2.5")
        assert "*Total:* 3.50 USDC to 2 recipient(s)" in last_text(mock_bot)

        await run_steps("btn:confirm_batch")

        requests = fake_api.calls_to("POST", "/api/transfers/send-batch")[0].payload["requests"]
        assert [r["request"]["email"] for r in requests] == ["friend@example.com", "other@example.com"]
        assert [r["request"]["amount"] for r in requests] == ["100000000", "250000000"]
        assert requests[0]["requestId"] != requests[1]["requestId"]
        assert "2 of 2 transfers succeeded" in last_text(mock_bot)

    @pytest.mark.asyncio
    async def test_batch_same_amount_and_deselect(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "batch"})

        await run_steps(
            "btn:batch_toggle:p1", "btn:batch_toggle:p2", "btn:batch_toggle:p1",
            "btn:batch_continue", "btn:batch_mode_same", "3", "btn:confirm_batch",
        )

        requests = fake_api.calls_to("POST", "/api/transfers/send-batch")[0].payload["requests"]
        assert [(r["request"]["email"], r["request"]["amount"]) for r in requests] == [("other@example.com", "300000000")]

    @pytest.mark.asyncio
    async def test_oversized_batch_amount_asks_again(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "batch"})

        await run_steps("btn:batch_toggle:p1", "btn:batch_continue", "btn:batch_mode_same", "1e30")

        assert "exceeds maximum limit" in last_text(mock_bot)
        assert active_scene(services)["current_step"] == "batch_uniform_amount"
        assert fake_api.calls_to("POST", "/api/transfers/send-batch") == []

    @pytest.mark.asyncio
    async def test_payee_lookup_failure_offers_retry(self, services, fake_api, mock_bot, run_steps):
        fake_api.add_sequence("GET", "/api/payees", [(503, {"message": "Service unavailable"}), (200, PAYEES)])
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        assert "Couldn't load your payees: Service unavailable" in last_text(mock_bot)
        assert "payee_retry" in buttons_of(last_markup(mock_bot))
        assert active_scene(services)["current_step"] == "payee_select"

        await run_steps("btn:payee_retry")
        assert "payee:p1" in buttons_of(last_markup(mock_bot))

    @pytest.mark.asyncio
    async def test_wallet_lookup_failure_offers_retry(self, services, fake_api, mock_bot, run_steps):
        fake_api.add_sequence("GET", "/api/wallets", [(500, None), (200, WALLETS)])
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene", {"method": "email"})

        await run_steps("btn:payee:p1")
        assert "Couldn't load your wallets" in last_text(mock_bot)

        await run_steps("btn:wallet_retry")
        assert "Select Source Wallet" in last_text(mock_bot)

    @pytest.mark.asyncio
    async def test_add_payee_returns_to_transfer(self, services, fake_api, mock_bot, run_steps):
        fake_api.add("POST", "/api/payees", {"id": "p3"})
        await log_in(services)
        await enter(services, mock_bot, "transfer-scene")

        await run_steps("btn:method_email", "btn:payee:add", "new@example.com", "btn:payee_skip_nickname")

        assert fake_api.calls_to("POST", "/api/payees")[0].payload == {"nickName": "new", "email": "new@example.com"}
        assert any("Payee *new* (new@example.com) added successfully!" in text for text in sent_texts(mock_bot))
        status = active_scene(services)
        assert (status["scene_id"], status["current_step"]) == ("transfer-scene", "payee_select")
        assert len(fake_api.calls_to("GET", "/api/payees")) == 2

    @pytest.mark.asyncio
    async def test_session_loss_ends_flow_with_login_button(self, services, fake_api, mock_bot, run_steps):
        await enter(services, mock_bot, "transfer-scene")

        await run_steps("btn:method_email")

        assert buttons_of(last_markup(mock_bot)) == ["login"]
        assert active_scene(services) is None


class TestPayeeAddScene:

    @pytest.mark.asyncio
    async def test_standalone_add_with_nickname(self, services, fake_api, mock_bot, run_steps):
        fake_api.add("POST", "/api/payees", {"id": "p3"})
        await log_in(services)
        await enter(services, mock_bot, "payee-add-scene")

        await run_steps("bad-email", "new@example.com", "Bestie")

        assert fake_api.calls_to("POST", "/api/payees")[0].payload == {"nickName": "Bestie", "email": "new@example.com"}
        assert active_scene(services) is None


class TestWithdrawalScene:

    QUOTE = {"quotePayload": json.dumps({"toAmount": "250000000000000", "toCurrency": "VND", "rate": "25000", "totalFee": "100000000"})}

    @pytest.fixture(autouse=True)
    def routes(self, fake_api):
        fake_api.add("GET", "/api/auth/me", {"countryCode": "IND"})
        fake_api.add("POST", "/api/quotes/public-offramp", self.QUOTE)
        signed_payload = json.dumps({"amount": "10000000000", "toAmount": "250000000000000", "toCurrency": "VND"})
        fake_api.add("POST", "/api/quotes/offramp", {"quotePayload": signed_payload, "quoteSignature": "sig-1"})
        fake_api.add("POST", "/api/transfers/offramp", {"id": "off-1", "status": "pending"})

    @pytest.mark.asyncio
    async def test_quote_then_confirm(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "withdrawal-scene")

        await run_steps("100")
        assert "*You Will Receive:* 2,500,000 VND" in last_text(mock_bot)
        assert fake_api.calls_to("POST", "/api/quotes/public-offramp")[0].payload["destinationCountry"] == "ind"

        await run_steps("btn:confirm_withdrawal")

        offramp_quote = fake_api.calls_to("POST", "/api/quotes/offramp")
        assert len(offramp_quote) == 1
        assert offramp_quote[0].payload["amount"] == "10000000000"
        submitted = fake_api.calls_to("POST", "/api/transfers/offramp")[0].payload
        assert submitted["quoteSignature"] == "sig-1"
        assert "Withdrawal Initiated" in last_text(mock_bot)
        assert "`off-1`" in last_text(mock_bot)
        assert active_scene(services) is None

    @pytest.mark.asyncio
    async def test_default_country_when_profile_fails(self, services, fake_api, mock_bot, run_steps):
        fake_api.add("GET", "/api/auth/me", {"message": "boom"}, status=500)
        await log_in(services)
        await enter(services, mock_bot, "withdrawal-scene")

        await run_steps("100")

        assert fake_api.calls_to("POST", "/api/quotes/public-offramp")[0].payload["destinationCountry"] == "vnm"

    @pytest.mark.asyncio
    async def test_quote_failure_offers_retry(self, services, fake_api, mock_bot, run_steps):
        fake_api.add_sequence("POST", "/api/quotes/public-offramp", [(400, {"message": "Amount too high"}), (200, self.QUOTE)])
        await log_in(services)
        await enter(services, mock_bot, "withdrawal-scene")

        await run_steps("100")
        assert "Error getting withdrawal quote: Amount too high" in last_text(mock_bot)
        assert buttons_of(last_markup(mock_bot)) == ["quote_retry", "cancel"]

        await run_steps("btn:quote_retry")
        assert "Withdrawal Quote" in last_text(mock_bot)
        # Country resolved once
        assert len(fake_api.calls_to("GET", "/api/auth/me")) == 1

    @pytest.mark.asyncio
    async def test_oversized_amount_asks_again(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "withdrawal-scene")

        await run_steps("1e30")

        assert "exceeds maximum limit" in last_text(mock_bot)
        assert active_scene(services)["current_step"] == "amount_entry"
        assert fake_api.calls_to("POST", "/api/quotes/public-offramp") == []

    @pytest.mark.asyncio
    async def test_text_at_quote_step_asks_for_buttons(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "withdrawal-scene")

        await run_steps("100", "yes")

        assert last_text(mock_bot) == "Please confirm or cancel the withdrawal using the buttons above."
        assert fake_api.calls_to("POST", "/api/transfers/offramp") == []

    @pytest.mark.asyncio
    async def test_cancel_at_confirmation(self, services, fake_api, mock_bot, run_steps):
        await log_in(services)
        await enter(services, mock_bot, "withdrawal-scene")

        await run_steps("100", "btn:cancel")

        assert "Withdrawal cancelled" in last_text(mock_bot)
        assert fake_api.calls_to("POST", "/api/quotes/offramp") == []
