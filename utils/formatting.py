"""
Presentation helpers - API payloads to Telegram (legacy Markdown) text

These are pure functions. The load-bearing parts are the amount contracts:
API amounts are integers scaled by 10^8 and are divided back before display.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Dict, Iterable, List, Optional

from config import Config
from services.kyc_service import STATUS_EMOJI, map_kyc_status
from utils.input_validation import AMOUNT_CONTEXT, from_api_amount
from utils.markdown_escaping import escape_markdown

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


def get_network_name(network_id: Any) -> str:
    return Config.NETWORK_NAMES.get(str(network_id), f"Unknown Network ({network_id})")


def truncate_address(address: Optional[str], separator: str = "..") -> str:
    """``0x1234..abcd`` for addresses longer than 10 characters"""
    if not address:
        return ""
    if len(address) <= 10:
        return address
    return f"{address[:6]}{separator}{address[-4:]}"


def format_usdc(amount: Decimal) -> str:
    """User-entered amounts: two decimals, or every digit when there are more"""
    with localcontext(AMOUNT_CONTEXT):
        rounded = amount.quantize(TWO_PLACES)
        if amount == rounded:
            return f"{rounded:,}"
        return f"{amount.normalize():f}"


def format_api_amount(raw: Any) -> str:
    """Scaled API amount -> two-decimal display string"""
    return str(from_api_amount(raw).quantize(TWO_PLACES, rounding=ROUND_DOWN))


def format_token_balance(balance: Any) -> str:
    """Whole-number balances are shown without decimals"""
    try:
        value = Decimal(str(balance))
    except InvalidOperation:
        return str(balance)
    if value.is_finite() and value == value.to_integral_value():
        return str(int(value))
    return str(balance)


def format_whole(value: Decimal) -> str:
    """Fiat amounts are shown without decimals, with thousands separators"""
    return f"{int(value):,}"


def format_date(value: Optional[str], fmt: str = "%m/%d/%Y, %H:%M") -> str:
    if not value:
        return "Unknown date"
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime(fmt)
    except ValueError:
        return str(value)


def format_wallet_balances(overview) -> str:
    """Per-network balances; ``overview`` is a ``WalletOverview``"""
    if not overview.wallets:
        return "You don't have any wallets yet."
    if not overview.balances:
        return "*Your Wallet Balances*\n\nNo balances found for your wallets."

    default = overview.default_wallet
    lines = ["*Your Wallet Balances*", ""]
    for network_balance in overview.balances:
        wallet = overview.wallet_for_network(network_balance.network)
        address = truncate_address(wallet.address if wallet else "")
        is_default = network_balance.is_default or (default is not None and default.network == network_balance.network)
        header = f"- *{get_network_name(network_balance.network)} - * `{address}`"
        lines.append(f"{header} (Default)" if is_default else header)

        if not network_balance.balances:
            lines.append("     ↳ No tokens found")
            continue
        for token in network_balance.balances:
            lines.append(f"     ↳ {format_token_balance(token.balance)} {escape_markdown(token.symbol)}")
    return "\n".join(lines)


def format_deposit_address(network: str, address: str) -> str:
    network_name = get_network_name(network)
    return (
        f"*Deposit USDC on {network_name}*\n\n"
        f"`{address}`\n\n"
        f"⚠️ Only send USDC on the {network_name} network to this address. "
        f"Sending other tokens or using another network may result in permanent loss of funds."
    )


def qr_code_url(address: str) -> str:
    return f"https://api.qrserver.com/v1/create-qr-code/?size=300x300&data={address}"


def format_payee_list(payees: Iterable) -> str:
    payees = list(payees)
    if not payees:
        return "You don't have any saved payees yet."
    lines = ["*Your Saved Payees*", ""]
    for index, payee in enumerate(payees, start=1):
        email = escape_markdown(payee.email)
        if payee.nickname:
            lines.append(f"{index}. {escape_markdown(payee.nickname)} - {email}")
        else:
            lines.append(f"{index}. {email}")
    return "\n".join(lines)


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def format_profile(profile: Optional[Dict[str, Any]]) -> str:
    if not profile:
        return "No profile information available."

    lines = ["*Your Profile*", ""]
    first_name = profile.get("firstName") or ""
    last_name = profile.get("lastName") or ""
    if first_name or last_name:
        lines.append(f"*Name:* {escape_markdown(f'{first_name} {last_name}'.strip())}")
    if profile.get("email"):
        lines.append(f"*Email:* {escape_markdown(profile['email'])}")
    if profile.get("role"):
        lines.append(f"*Role:* {escape_markdown(_capitalize(profile['role']))}")
    if profile.get("status"):
        lines.append(f"*Status:* {escape_markdown(_capitalize(profile['status']))}")
    if profile.get("type"):
        lines.append(f"*Account Type:* {escape_markdown(_capitalize(profile['type']))}")
    if profile.get("countryCode"):
        lines.append(f"*Country:* {profile['countryCode'].upper()}")
    if profile.get("walletAddress"):
        lines.extend(["", "*Wallet Address:*", f"`{profile['walletAddress']}`"])
    return "\n".join(lines)


KYC_ACTION_MESSAGES = {
    "Approved": "✨ Your KYC verification is complete. You have full access to all features.",
    "Rejected": "❗️ Your KYC verification was rejected. Please contact support for assistance.",
    "Expired": "⚠️ Your KYC verification has expired. Please complete the verification process again.",
    "Pending": "📝 Your KYC verification is in progress. We will notify you once the review is complete.",
}


def format_kyc_status(record: Optional[Dict[str, Any]]) -> str:
    if not record:
        return (
            "*KYC Verification Status*\n\n"
            "You haven't started KYC verification yet. "
            "Please complete it on the Copperx web app to unlock all features."
        )

    status = map_kyc_status(record.get("status"))
    detail = record.get("kycDetail") or {}
    lines = ["*KYC Verification Status*", "", f"*Current Status:* {STATUS_EMOJI[status]} {status}", "", "*Personal Details:*"]

    name = f"{detail.get('firstName') or ''} {detail.get('lastName') or ''}".strip()
    if name:
        lines.append(f"• Name: {escape_markdown(name)}")
    if detail.get("email"):
        lines.append(f"• Email: {escape_markdown(detail['email'])}")
    if detail.get("nationality"):
        lines.append(f"• Nationality: {str(detail['nationality']).upper()}")

    status_updates = record.get("statusUpdates") or {}
    if isinstance(status_updates, dict) and status_updates:
        lines.extend(["", "*Status History:*"])
        for status_key, timestamp in status_updates.items():
            history_status = map_kyc_status(status_key)
            when = format_date(timestamp, "%b %d, %Y, %H:%M UTC")
            lines.append(f"{STATUS_EMOJI[history_status]} {history_status}: {when}")

    lines.extend(["", KYC_ACTION_MESSAGES[status]])
    return "\n".join(lines)


def transaction_destination(transaction: Dict[str, Any]) -> str:
    account = transaction.get("destinationAccount")
    if isinstance(account, dict):
        if account.get("payeeDisplayName"):
            return account["payeeDisplayName"]
        if account.get("payeeEmail"):
            return account["payeeEmail"]
        if account.get("walletAddress"):
            return truncate_address(account["walletAddress"], "...")
    payee = transaction.get("payee")
    if isinstance(payee, dict):
        if payee.get("displayName"):
            return payee["displayName"]
        if payee.get("email"):
            return payee["email"]
    wallet = transaction.get("destinationWallet")
    if isinstance(wallet, dict) and wallet.get("address"):
        return truncate_address(wallet["address"], "...")
    return "N/A"


def format_transaction_history(
    transactions: List[Dict[str, Any]], bot_username: Optional[str] = None
) -> str:
    if not transactions:
        return "No transactions found."

    lines = ["📜 *Transaction History*", ""]
    for index, tx in enumerate(transactions, start=1):
        tx_type = str(tx.get("type") or "Unknown").upper()
        status = str(tx.get("status") or "Unknown").upper()
        destination = escape_markdown(transaction_destination(tx))
        lines.append(f"{index}. *{format_date(tx.get('createdAt'))}* | {tx_type} | {destination}")
        lines.append(f"   Amount: {format_api_amount(tx.get('amount'))} {tx.get('currency') or Config.DEFAULT_CURRENCY} | Status: {status}")
        if bot_username and tx.get("id"):
            lines.append(f"   [View Details](https://t.me/{bot_username}?start=tx_{tx['id']})")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_transaction_details(transaction: Optional[Dict[str, Any]]) -> str:
    if not transaction:
        return "Transaction not found."

    details = [
        f"*Transaction ID:* `{transaction.get('id', 'Unknown')}`",
        f"*Date:* {format_date(transaction.get('createdAt'), '%Y-%m-%d %H:%M:%S')}",
        f"*Type:* {str(transaction.get('type') or 'Unknown').upper()}",
        f"*Amount:* {format_api_amount(transaction.get('amount'))} {transaction.get('currency') or Config.DEFAULT_CURRENCY}",
        f"*Status:* {str(transaction.get('status') or 'Unknown').upper()}",
    ]
    source = transaction.get("sourceWallet")
    if isinstance(source, dict):
        details.append(f"*Source Wallet:* `{source.get('address') or 'N/A'}`")

    account = transaction.get("destinationAccount")
    payee = transaction.get("payee")
    if isinstance(account, dict):
        if account.get("payeeDisplayName"):
            details.append(f"*Destination Name:* {escape_markdown(account['payeeDisplayName'])}")
        if account.get("payeeEmail"):
            details.append(f"*Destination Email:* {escape_markdown(account['payeeEmail'])}")
        if account.get("walletAddress"):
            details.append(f"*Destination Wallet:* `{account['walletAddress']}`")
    elif isinstance(payee, dict):
        if payee.get("displayName"):
            details.append(f"*Payee Name:* {escape_markdown(payee['displayName'])}")
        if payee.get("email"):
            details.append(f"*Payee Email:* {escape_markdown(payee['email'])}")

    wallet = transaction.get("destinationWallet")
    if isinstance(wallet, dict) and not account:
        details.append(f"*Destination Wallet:* `{wallet.get('address') or 'N/A'}`")
    if transaction.get("transactionHash"):
        details.append(f"*Transaction Hash:* `{transaction['transactionHash']}`")
    if transaction.get("notes"):
        details.append(f"*Notes:* {escape_markdown(transaction['notes'])}")
    return "\n".join(details)


def format_transfer_summary(recipient: str, amount: Decimal, wallet=None, method: str = "email") -> str:
    """Confirmation text for a single send; ``wallet`` is the source ``Wallet``"""
    recipient_label = "Wallet Address" if method == "wallet" else "Recipient"
    recipient_text = f"`{recipient}`" if method == "wallet" else escape_markdown(recipient)
    lines = [
        "*Transfer Summary*",
        "",
        f"*{recipient_label}:* {recipient_text}",
        f"*Amount:* {format_usdc(amount)} {Config.DEFAULT_CURRENCY}",
    ]
    if wallet is not None:
        lines.append(f"*From Wallet:* {get_network_name(wallet.network)} `{truncate_address(wallet.address)}`")
    lines.extend(["", "Please confirm this transfer."])
    return "\n".join(lines)


def format_batch_summary(items: Iterable) -> str:
    """``items`` are ``BatchItem`` records"""
    items = list(items)
    total = sum((item.amount for item in items), Decimal(0))
    lines = ["*Batch Transfer Summary*", ""]
    for index, item in enumerate(items, start=1):
        lines.append(f"{index}. {escape_markdown(item.email)}: {format_usdc(item.amount)} {Config.DEFAULT_CURRENCY}")
    lines.extend(["", f"*Total:* {format_usdc(total)} {Config.DEFAULT_CURRENCY} to {len(items)} recipient(s)", "", "Please confirm this batch transfer."])
    return "\n".join(lines)


def summarize_batch_result(response: Any, submitted: int) -> str:
    """Counts successful items when the API returns a per-item list"""
    items = response.get("responses") if isinstance(response, dict) else response
    if isinstance(items, list):
        succeeded = sum(
            1 for item in items
            if isinstance(item, dict) and str(item.get("status", "")).lower() == "success"
        )
        return f"✅ *Batch Transfer Submitted*\n\n{succeeded} of {submitted} transfers succeeded."
    return f"✅ *Batch Transfer Submitted*\n\n{submitted} transfers submitted."


def format_quote_summary(quote) -> str:
    """``quote`` is a ``WithdrawalQuote``"""
    return (
        "*Withdrawal Quote*\n\n"
        f"*Amount:* {format_usdc(quote.amount)} {Config.DEFAULT_CURRENCY}\n"
        f"*Fee:* {quote.fee.quantize(TWO_PLACES, rounding=ROUND_DOWN)} {Config.DEFAULT_CURRENCY}\n"
        f"*Exchange Rate:* 1 {Config.DEFAULT_CURRENCY} = {format_whole(quote.rate)} {quote.to_currency}\n"
        f"*You Will Receive:* {format_whole(quote.to_amount)} {quote.to_currency}\n"
        f"*Estimated Arrival:* {quote.arrival_time}\n\n"
        "Do you want to proceed with this withdrawal?"
    )


def format_withdrawal_result(response: Dict[str, Any]) -> str:
    """Success text from the offramp response and the signed quote payload it executed"""
    try:
        quote_data = json.loads(response.get("quotePayload") or "{}")
    except (TypeError, ValueError):
        quote_data = {}
    to_currency = quote_data.get("toCurrency") or "VND"
    to_amount = from_api_amount(quote_data.get("toAmount"))
    return (
        "✅ *Withdrawal Initiated*\n\n"
        f"*Transaction ID:* `{response.get('id')}`\n"
        f"*Amount:* {format_api_amount(quote_data.get('amount'))} {Config.DEFAULT_CURRENCY}\n"
        f"*You Will Receive:* {format_whole(to_amount)} {to_currency}\n"
        f"*Status:* {str(response.get('status') or 'PENDING').upper()}\n\n"
        "You can check the status of your withdrawal with /history."
    )


def format_deposit_notification(event) -> str:
    """``event`` is a ``DepositEvent``"""
    title = "💰 *New Deposit Received (SIMULATED)*" if event.simulated else "💰 *New Deposit Received*"
    return (
        f"{title}\n\n"
        f"Amount: {escape_markdown(event.amount)} {escape_markdown(event.currency)}\n"
        f"Network: {escape_markdown(get_network_name(event.network) if event.network in Config.NETWORK_NAMES else event.network)}\n"
        f"Transaction ID: `{event.tx_hash}`"
    )
