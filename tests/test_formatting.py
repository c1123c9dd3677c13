"""Tests for message formatting and Markdown escaping"""

import json
from decimal import Decimal

import pytest

from services.notification_relay import DepositEvent
from services.transfer_service import BatchItem, WithdrawalQuote
from services.wallet_service import NetworkBalance, TokenBalance, Wallet, WalletOverview
from utils.formatting import (
    format_api_amount,
    format_batch_summary,
    format_deposit_notification,
    format_kyc_status,
    format_profile,
    format_quote_summary,
    format_token_balance,
    format_transaction_details,
    format_transaction_history,
    format_transfer_summary,
    format_usdc,
    format_wallet_balances,
    format_withdrawal_result,
    get_network_name,
    summarize_batch_result,
    truncate_address,
)
from utils.markdown_escaping import escape_markdown


class TestMarkdownEscaping:

    def test_special_characters(self):
        assert escape_markdown("first_last*name") == "first\\_last\\*name"
        assert escape_markdown("[x]`y`") == "\\[x]\\`y\\`"

    def test_empty_values(self):
        assert escape_markdown(None) == ""
        assert escape_markdown("") == ""


class TestAmountFormatting:

    @pytest.mark.parametrize("amount,expected", [
        (Decimal("1234.5"), "1,234.50"),
        (Decimal("10"), "10.00"),
        (Decimal("0.123"), "0.123"),
    ])
    def test_format_usdc(self, amount, expected):
        assert format_usdc(amount) == expected

    def test_api_amount_truncates(self):
        assert format_api_amount("1234567890") == "12.34"
        assert format_api_amount(None) == "0.00"

    def test_token_balance(self):
        assert format_token_balance("5.000") == "5"
        assert format_token_balance("5.25") == "5.25"
        assert format_token_balance("n/a") == "n/a"


class TestLookups:

    def test_network_names(self):
        assert get_network_name("137") == "Polygon"
        assert get_network_name(8453) == "Base"
        assert get_network_name("999") == "Unknown Network (999)"

    def test_truncate_address(self):
        assert truncate_address("0x1234567890abcdef") == "0x1234..cdef"
        assert truncate_address("0x1234") == "0x1234"
        assert truncate_address(None) == ""


class TestWalletBalances:

    def test_default_marker_and_tokens(self):
        overview = WalletOverview(
            wallets=[
                Wallet(id="w1", network="137", address="0x" + "1" * 40, is_default=True),
                Wallet(id="w2", network="8453", address="0x" + "2" * 40),
            ],
            balances=[
                NetworkBalance(network="137", balances=[TokenBalance("USDC", "12.5")]),
                NetworkBalance(network="8453"),
            ],
        )

        text = format_wallet_balances(overview)

        assert "Polygon" in text and "(Default)" in text.splitlines()[2]
        assert "↳ 12.5 USDC" in text
        assert "↳ No tokens found" in text

    def test_no_wallets(self):
        assert format_wallet_balances(WalletOverview(wallets=[], balances=[])) == "You don't have any wallets yet."


class TestAccountFormatting:

    def test_profile_escapes_user_fields(self):
        text = format_profile({"firstName": "Jo_Ann", "email": "jo_ann@example.com", "countryCode": "vnm"})
        assert "Jo\\_Ann" in text
        assert "jo\\_ann@example.com" in text
        assert "*Country:* VNM" in text

    def test_kyc_not_started(self):
        assert "haven't started" in format_kyc_status(None)

    def test_kyc_status_mapping(self):
        text = format_kyc_status({"status": "verified", "kycDetail": {"firstName": "Ann"}})
        assert "✅ Approved" in text
        assert "full access" in text


class TestTransactions:

    TX = {
        "id": "tx-1",
        "createdAt": "2024-03-05T10:20:00Z",
        "type": "send",
        "status": "success",
        "amount": "150000000",
        "currency": "USDC",
        "destinationAccount": {"payeeEmail": "friend@example.com"},
    }

    def test_history_with_deep_link(self):
        text = format_transaction_history([self.TX], bot_username="wallet_bot")

        assert "03/05/2024, 10:20" in text
        assert "SEND" in text and "SUCCESS" in text
        assert "Amount: 1.50 USDC" in text
        assert "https://t.me/wallet_bot?start=tx_tx-1" in text

    def test_empty_history(self):
        assert format_transaction_history([]) == "No transactions found."

    def test_details(self):
        text = format_transaction_details({**self.TX, "transactionHash": "0xabc"})
        assert "*Transaction ID:* `tx-1`" in text
        assert "*Destination Email:* friend@example.com" in text
        assert "`0xabc`" in text

    def test_details_missing(self):
        assert format_transaction_details(None) == "Transaction not found."


class TestTransferMessages:

    def test_transfer_summary_wallet_method(self):
        wallet = Wallet(id="w1", network="137", address="0x" + "1" * 40)
        text = format_transfer_summary("0x" + "f" * 40, Decimal("5"), wallet=wallet, method="wallet")

        assert "*Wallet Address:*" in text
        assert "*Amount:* 5.00 USDC" in text
        assert "*From Wallet:* Polygon" in text

    def test_batch_summary_total(self):
        text = format_batch_summary([BatchItem("a@example.com", Decimal("1")), BatchItem("b@example.com", Decimal("2.5"))])
        assert "*Total:* 3.50 USDC to 2 recipient(s)" in text

    def test_batch_result_counts_successes(self):
        response = {"responses": [{"status": "success"}, {"status": "failed"}]}
        assert "1 of 2 transfers succeeded" in summarize_batch_result(response, 2)
        assert "2 transfers submitted" in summarize_batch_result({"ok": True}, 2)

    def test_quote_summary(self):
        quote = WithdrawalQuote(
            amount=Decimal("100"),
            to_amount=Decimal("2500000"),
            to_currency="VND",
            rate=Decimal("25000"),
            fee=Decimal("0.5"),
            arrival_time="1-3 Business days",
        )
        text = format_quote_summary(quote)

        assert "*Fee:* 0.50 USDC" in text
        assert "1 USDC = 25,000 VND" in text
        assert "*You Will Receive:* 2,500,000 VND" in text

    def test_withdrawal_result_scales_amounts(self):
        payload = json.dumps({"amount": "10000000000", "toAmount": "250000000000000", "toCurrency": "VND"})
        text = format_withdrawal_result({"id": "off-1", "status": "pending", "quotePayload": payload})

        assert "`off-1`" in text
        assert "*Amount:* 100.00 USDC" in text
        assert "*You Will Receive:* 2,500,000 VND" in text
        assert "*Status:* PENDING" in text

    def test_deposit_notification(self):
        text = format_deposit_notification(DepositEvent(amount="10", currency="USDC", network="42161", tx_hash="0xh", simulated=True))
        assert "(SIMULATED)" in text
        assert "Network: Arbitrum One" in text
