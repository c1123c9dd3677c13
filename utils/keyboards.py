"""Inline keyboard utilities for the USDC Wallet Bot"""

from typing import Iterable

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from utils.formatting import get_network_name


def main_menu_keyboard(logged_in: bool = False):
    """Main menu; the last row toggles between Login and Logout"""
    keyboard_rows = [
        [
            InlineKeyboardButton("💰 Balance", callback_data="balance"),
            InlineKeyboardButton("📥 Deposit", callback_data="deposit"),
        ],
        [
            InlineKeyboardButton("💸 Send", callback_data="send"),
            InlineKeyboardButton("🏦 Withdraw", callback_data="withdraw"),
        ],
        [
            InlineKeyboardButton("👥 Payees", callback_data="payees"),
            InlineKeyboardButton("📜 History", callback_data="history"),
        ],
        [
            InlineKeyboardButton("👤 Profile", callback_data="profile"),
            InlineKeyboardButton("🪪 KYC Status", callback_data="kyc"),
        ],
    ]
    if logged_in:
        keyboard_rows.append([InlineKeyboardButton("🚪 Logout", callback_data="logout")])
    else:
        keyboard_rows.append([InlineKeyboardButton("🔐 Login", callback_data="login")])
    return InlineKeyboardMarkup(keyboard_rows)


def balance_keyboard(wallets: Iterable = ()):
    """Shortcuts under the balance overview, one 'set default' button per non-default wallet"""
    keyboard_rows = [
        [InlineKeyboardButton(f"⭐ Set {get_network_name(wallet.network)} as default", callback_data=f"set_default_{wallet.id}")]
        for wallet in wallets
        if not wallet.is_default
    ]
    keyboard_rows.append([
        InlineKeyboardButton("📥 Deposit", callback_data="deposit"),
        InlineKeyboardButton("💸 Send", callback_data="send"),
    ])
    return InlineKeyboardMarkup(keyboard_rows)


def deposit_networks_keyboard(wallets: Iterable):
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(get_network_name(wallet.network), callback_data=f"deposit_{wallet.network}")]
        for wallet in wallets
    ])


def back_keyboard(callback_data: str, label: str = "⬅️ Back"):
    return InlineKeyboardMarkup([[InlineKeyboardButton(label, callback_data=callback_data)]])


def payee_list_keyboard(has_payees: bool):
    keyboard_rows = [[InlineKeyboardButton("➕ Add Payee", callback_data="add_payee")]]
    if has_payees:
        keyboard_rows.append([InlineKeyboardButton("🗑️ Delete Payee", callback_data="delete_payee")])
    return InlineKeyboardMarkup(keyboard_rows)


def confirm_keyboard(confirm_data: str, cancel_data: str, confirm_label: str = "✅ Yes", cancel_label: str = "❌ No"):
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(confirm_label, callback_data=confirm_data),
        InlineKeyboardButton(cancel_label, callback_data=cancel_data),
    ]])


def pagination_keyboard(page: int, has_next: bool, prefix: str = "tx_page_"):
    row = []
    if page > 1:
        row.append(InlineKeyboardButton("⬅️ Previous", callback_data=f"{prefix}{page - 1}"))
    if has_next:
        row.append(InlineKeyboardButton("Next ➡️", callback_data=f"{prefix}{page + 1}"))
    return InlineKeyboardMarkup([row]) if row else None



def retry_keyboard(retry_data: str, back_data: str = "main_menu", back_label: str = "⬅️ Main Menu"):
    """Shown when a lookup fails outside a scene"""
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("🔄 Retry", callback_data=retry_data),
        InlineKeyboardButton(back_label, callback_data=back_data),
    ]])
