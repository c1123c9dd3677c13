"""
Transfer Scene Definition

Sends USDC to an email address, an on-chain address, or several saved payees
at once.

Flow (email):  Method → Payee Selection → Wallet Selection → Amount → Confirmation → Processing
Flow (wallet): Method → Address Input → Wallet Selection → Amount → Confirmation → Processing
Flow (batch):  Method → Multi-Payee Selection → Amount Mode → Amount(s) → Batch Confirmation → Processing

Lookups that fail on the way (payees, wallets) offer a retry button and keep
the flow open. The final submit is never retried: any failure there ends the
scene and the user has to start again.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from services.payee_service import Payee
from services.scene_engine import Scene, SceneInput, SceneSession, SceneStatus, Transition, cancel_button
from services.transfer_service import BatchItem
from services.wallet_service import Wallet
from utils.exception_handler import AuthExpired, NotAuthenticated, WalletBotError
from utils.formatting import (
    format_batch_summary,
    format_transfer_summary,
    format_usdc,
    get_network_name,
    summarize_batch_result,
    truncate_address,
)
from utils.input_validation import InputValidator
from utils.markdown_escaping import escape_markdown

logger = logging.getLogger(__name__)

PAYEE_ADD_SCENE = "payee-add-scene"


class TransferStep(str, Enum):
    METHOD = "method"
    PAYEE_SELECT = "payee_select"
    ADDRESS_ENTRY = "address_entry"
    WALLET_PICK = "wallet_pick"
    AMOUNT_ENTRY = "amount_entry"
    CONFIRM = "confirm"
    BATCH_SELECT = "batch_select"
    BATCH_AMOUNT_MODE = "batch_amount_mode"
    BATCH_AMOUNT_ENTRY = "batch_amount_entry"
    BATCH_UNIFORM_AMOUNT = "batch_uniform_amount"
    BATCH_CONFIRM = "batch_confirm"


def _keyboard(*rows: List[InlineKeyboardButton]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([list(row) for row in rows] + [[cancel_button()]])


async def _use_buttons(session: SceneSession, hint: str = "Please use the buttons above to continue.") -> Transition:
    await session.reply(hint)
    return Transition.stay()


async def _type_answer(session: SceneSession) -> Transition:
    return await _use_buttons(session, "Please type your answer to continue.")


class TransferScene(Scene):
    scene_id = "transfer-scene"
    steps = tuple(TransferStep)
    actions = (
        "method_email", "method_wallet", "method_batch",
        "payee_retry", "wallet_retry", "wallet_continue",
        "confirm_transfer", "change_wallet",
        "batch_retry", "batch_continue", "batch_mode_each", "batch_mode_same", "confirm_batch",
    )
    action_prefixes = ("payee:", "wallet:", "batch_toggle:")
    cancel_text = "Transfer cancelled. You can start again with /send."

    # ----- lookups that may fail without ending the flow -----

    async def _load_payees(self, session: SceneSession, retry_action: str) -> Optional[List[Payee]]:
        try:
            payees = await session.services.payees.list_payees(session.user_id)
        except (NotAuthenticated, AuthExpired):
            raise
        except WalletBotError as e:
            logger.warning(f"Payee lookup failed for user {session.user_id}: {e.message}")
            await session.edit_or_send(
                f"❌ Couldn't load your payees: {e.message}",
                reply_markup=_keyboard([InlineKeyboardButton("🔄 Retry", callback_data=retry_action)]),
                parse_mode=None,
            )
            return None
        session.data["payees"] = {payee.id: payee for payee in payees}
        return payees

    async def _load_wallets(self, session: SceneSession) -> Optional[List[Wallet]]:
        try:
            wallets = await session.services.wallets.get_wallets(session.user_id)
        except (NotAuthenticated, AuthExpired):
            raise
        except WalletBotError as e:
            logger.warning(f"Wallet lookup failed for user {session.user_id}: {e.message}")
            await session.edit_or_send(
                f"❌ Couldn't load your wallets: {e.message}",
                reply_markup=_keyboard([InlineKeyboardButton("🔄 Retry", callback_data="wallet_retry")]),
                parse_mode=None,
            )
            return None
        session.data["wallets"] = {wallet.id: wallet for wallet in wallets}
        return wallets

    # ----- method -----

    async def prompt_method(self, session: SceneSession) -> Transition:
        preset = session.data.get("method")
        if preset == "email":
            return Transition.goto(TransferStep.PAYEE_SELECT)
        if preset == "wallet":
            return Transition.goto(TransferStep.ADDRESS_ENTRY)
        if preset == "batch":
            return Transition.goto(TransferStep.BATCH_SELECT)

        await session.edit_or_send(
            "💸 *Send USDC*\n\nHow would you like to send funds?",
            reply_markup=_keyboard(
                [InlineKeyboardButton("📧 Send to Email", callback_data="method_email")],
                [InlineKeyboardButton("🔑 Send to Wallet Address", callback_data="method_wallet")],
                [InlineKeyboardButton("👥 Batch Send to Payees", callback_data="method_batch")],
            ),
        )
        return Transition.stay()

    async def handle_method(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        targets = {
            "method_email": ("email", TransferStep.PAYEE_SELECT),
            "method_wallet": ("wallet", TransferStep.ADDRESS_ENTRY),
            "method_batch": ("batch", TransferStep.BATCH_SELECT),
        }
        if scene_input.action not in targets:
            return await _use_buttons(session, "Please choose a transfer method using the buttons above.")
        method, step = targets[scene_input.action]
        session.data["method"] = method
        return Transition.goto(step)

    # ----- recipient -----

    async def prompt_payee_select(self, session: SceneSession) -> Transition:
        payees = await self._load_payees(session, "payee_retry")
        if payees is None:
            return Transition.stay()

        rows = [
            [InlineKeyboardButton(f"{payee.nickname} ({payee.email})" if payee.nickname else payee.email,
                                  callback_data=f"payee:{payee.id}")]
            for payee in payees
        ]
        rows.append([InlineKeyboardButton("➕ Add New Payee", callback_data="payee:add")])
        intro = "Select a saved payee" if payees else "You don't have any saved payees yet"
        await session.edit_or_send(
            f"📧 *Send to Email*\n\n{intro}, or type the recipient's email address:",
            reply_markup=_keyboard(*rows),
        )
        return Transition.stay()

    async def handle_payee_select(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        action = scene_input.action
        if action == "payee_retry":
            return Transition.goto(TransferStep.PAYEE_SELECT)
        if action == "payee:add":
            return Transition.switch(PAYEE_ADD_SCENE, {"then": self.scene_id, "then_data": {"method": "email"}})
        if action and action.startswith("payee:"):
            payee = session.data.get("payees", {}).get(action.split(":", 1)[1])
            if payee is None:
                await session.reply("Payee not found. Please pick one from the list.")
                return Transition.stay()
            session.data.update({"recipient_email": payee.email, "recipient_label": payee.label, "payee_id": payee.id})
            return Transition.goto(TransferStep.WALLET_PICK)

        if not scene_input.text:
            return await _type_answer(session)
        email = InputValidator.validate_email(scene_input.text)
        session.data.update({"recipient_email": email, "recipient_label": email, "payee_id": None})
        return Transition.goto(TransferStep.WALLET_PICK)

    async def prompt_address_entry(self, session: SceneSession) -> Transition:
        await session.edit_or_send(
            "🔑 *Send to Wallet Address*\n\nPlease enter the recipient's wallet address (starting with 0x):",
            reply_markup=_keyboard(),
        )
        return Transition.stay()

    async def handle_address_entry(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return await _type_answer(session)
        session.data["wallet_address"] = InputValidator.validate_wallet_address(scene_input.text)
        return Transition.goto(TransferStep.WALLET_PICK)

    # ----- source wallet -----

    def _selected_wallet(self, session: SceneSession) -> Optional[Wallet]:
        return session.data.get("wallets", {}).get(session.data.get("wallet_id"))

    async def _render_wallets(self, session: SceneSession) -> None:
        wallets: Dict[str, Wallet] = session.data["wallets"]
        selected = self._selected_wallet(session)
        rows = [
            [InlineKeyboardButton(
                f"{'✅ ' if selected and wallet.id == selected.id else ''}{get_network_name(wallet.network)}"
                f"{' (Default)' if wallet.is_default else ''}",
                callback_data=f"wallet:{wallet.id}",
            )]
            for wallet in wallets.values()
        ]
        rows.append([InlineKeyboardButton("Continue ➡️", callback_data="wallet_continue")])
        await session.edit_or_send(
            "💳 *Select Source Wallet*\n\n"
            f"Sending from: *{get_network_name(selected.network)}* `{truncate_address(selected.address)}`\n\n"
            "Tap a wallet to switch, or Continue.",
            reply_markup=_keyboard(*rows),
        )

    async def prompt_wallet_pick(self, session: SceneSession) -> Transition:
        wallets = await self._load_wallets(session)
        if wallets is None:
            return Transition.stay()
        if not wallets:
            await session.edit_or_send("❌ You don't have any wallets to send from. Please check your account.")
            return Transition.leave(SceneStatus.FAILED)

        if self._selected_wallet(session) is None:
            default = next((wallet for wallet in wallets if wallet.is_default), wallets[0])
            session.data["wallet_id"] = default.id
        await self._render_wallets(session)
        return Transition.stay()

    async def handle_wallet_pick(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        action = scene_input.action
        if action == "wallet_retry":
            return Transition.goto(TransferStep.WALLET_PICK)
        if action and action.startswith("wallet:"):
            wallet_id = action.split(":", 1)[1]
            if wallet_id in session.data.get("wallets", {}):
                session.data["wallet_id"] = wallet_id
            await self._render_wallets(session)
            return Transition.stay()
        if action == "wallet_continue":
            if session.data.pop("return_to_confirm", False):
                return Transition.goto(TransferStep.CONFIRM)
            return Transition.goto(TransferStep.AMOUNT_ENTRY)
        return await _use_buttons(session)

    # ----- amount & confirmation -----

    async def prompt_amount_entry(self, session: SceneSession) -> Transition:
        await session.edit_or_send(
            "💰 Please enter the amount of USDC to send (minimum 0.1):",
            reply_markup=_keyboard(),
        )
        return Transition.stay()

    async def handle_amount_entry(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return await _type_answer(session)
        session.data["amount"] = InputValidator.validate_amount(scene_input.text)
        return Transition.goto(TransferStep.CONFIRM)

    async def prompt_confirm(self, session: SceneSession) -> Transition:
        data = session.data
        if data["method"] == "wallet":
            summary = format_transfer_summary(data["wallet_address"], data["amount"], self._selected_wallet(session), "wallet")
        else:
            summary = format_transfer_summary(data["recipient_label"], data["amount"], self._selected_wallet(session))
        await session.reply(
            summary,
            reply_markup=_keyboard(
                [InlineKeyboardButton("✅ Confirm", callback_data="confirm_transfer")],
                [InlineKeyboardButton("🔄 Change Wallet", callback_data="change_wallet")],
            ),
        )
        return Transition.stay()

    async def handle_confirm(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if scene_input.action == "change_wallet":
            session.data["return_to_confirm"] = True
            return Transition.goto(TransferStep.WALLET_PICK)
        if scene_input.action != "confirm_transfer":
            return await _use_buttons(session)

        data = session.data
        transfers = session.services.transfers
        await session.edit_or_send("⏳ Processing your transfer...")
        if data["method"] == "wallet":
            response = await transfers.withdraw_to_wallet(
                session.user_id, data["wallet_address"], data["amount"], wallet_id=data.get("wallet_id")
            )
            recipient = f"`{data['wallet_address']}`"
        else:
            response = await transfers.send_to_email(
                session.user_id,
                data["recipient_email"],
                data["amount"],
                payee_id=data.get("payee_id"),
                wallet_id=data.get("wallet_id"),
            )
            recipient = escape_markdown(data["recipient_label"])

        tx_id = response.get("id", "N/A") if isinstance(response, dict) else "N/A"
        await session.edit_or_send(
            "✅ *Transfer Successful!*\n\n"
            f"*Amount:* {format_usdc(data['amount'])} USDC\n"
            f"*Recipient:* {recipient}\n"
            f"*Transaction ID:* `{tx_id}`\n\n"
            "Use /history to follow its status."
        )
        return Transition.leave()

    # ----- batch -----

    async def prompt_batch_select(self, session: SceneSession) -> Transition:
        payees = session.data.get("payees")
        if payees is None:
            loaded = await self._load_payees(session, "batch_retry")
            if loaded is None:
                return Transition.stay()
            payees = session.data["payees"]
        if not payees:
            await session.edit_or_send("You don't have any saved payees yet. Add some with /payees first.")
            return Transition.leave(SceneStatus.FAILED)

        session.data.setdefault("selected", [])
        await self._render_batch_selection(session)
        return Transition.stay()

    async def _render_batch_selection(self, session: SceneSession, notice: str = "") -> None:
        selected = session.data["selected"]
        rows = [
            [InlineKeyboardButton(
                f"{'☑️' if payee.id in selected else '⬜'} {payee.label}",
                callback_data=f"batch_toggle:{payee.id}",
            )]
            for payee in session.data["payees"].values()
        ]
        rows.append([InlineKeyboardButton(f"Continue ➡️ ({len(selected)} selected)", callback_data="batch_continue")])
        await session.edit_or_send(
            f"👥 *Batch Send*\n\nTap payees to select them.{notice}",
            reply_markup=_keyboard(*rows),
        )

    async def handle_batch_select(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        action = scene_input.action
        if action == "batch_retry":
            session.data.pop("payees", None)
            return Transition.goto(TransferStep.BATCH_SELECT)
        if action and action.startswith("batch_toggle:"):
            payee_id = action.split(":", 1)[1]
            selected = session.data["selected"]
            if payee_id in selected:
                selected.remove(payee_id)
            elif payee_id in session.data["payees"]:
                selected.append(payee_id)
            await self._render_batch_selection(session)
            return Transition.stay()
        if action == "batch_continue":
            if not session.data["selected"]:
                await self._render_batch_selection(session, "\n\n⚠️ Please select at least one payee.")
                return Transition.stay()
            return Transition.goto(TransferStep.BATCH_AMOUNT_MODE)
        return await _use_buttons(session)

    async def prompt_batch_amount_mode(self, session: SceneSession) -> Transition:
        await session.edit_or_send(
            f"You selected {len(session.data['selected'])} payee(s). How would you like to set amounts?",
            reply_markup=_keyboard(
                [InlineKeyboardButton("💰 Different amount for each", callback_data="batch_mode_each")],
                [InlineKeyboardButton("🟰 Same amount for all", callback_data="batch_mode_same")],
            ),
        )
        return Transition.stay()

    async def handle_batch_amount_mode(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        session.data["amounts"] = {}
        if scene_input.action == "batch_mode_each":
            session.data["batch_index"] = 0
            return Transition.goto(TransferStep.BATCH_AMOUNT_ENTRY)
        if scene_input.action == "batch_mode_same":
            return Transition.goto(TransferStep.BATCH_UNIFORM_AMOUNT)
        return await _use_buttons(session)

    async def prompt_batch_amount_entry(self, session: SceneSession) -> Transition:
        selected = session.data["selected"]
        index = session.data["batch_index"]
        payee = session.data["payees"][selected[index]]
        await session.reply(
            f"Enter the amount of USDC for *{escape_markdown(payee.label)}* ({index + 1}/{len(selected)}, minimum 0.1):",
            reply_markup=_keyboard(),
        )
        return Transition.stay()

    async def handle_batch_amount_entry(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return await _type_answer(session)
        amount = InputValidator.validate_amount(scene_input.text)
        selected = session.data["selected"]
        session.data["amounts"][selected[session.data["batch_index"]]] = amount
        session.data["batch_index"] += 1
        if session.data["batch_index"] < len(selected):
            return Transition.goto(TransferStep.BATCH_AMOUNT_ENTRY)
        return Transition.goto(TransferStep.BATCH_CONFIRM)

    async def prompt_batch_uniform_amount(self, session: SceneSession) -> Transition:
        await session.edit_or_send(
            f"Enter the amount of USDC to send to each of the {len(session.data['selected'])} payee(s) (minimum 0.1):",
            reply_markup=_keyboard(),
        )
        return Transition.stay()

    async def handle_batch_uniform_amount(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return await _type_answer(session)
        amount = InputValidator.validate_amount(scene_input.text)
        session.data["amounts"] = {payee_id: amount for payee_id in session.data["selected"]}
        return Transition.goto(TransferStep.BATCH_CONFIRM)

    def _batch_items(self, session: SceneSession) -> List[BatchItem]:
        payees = session.data["payees"]
        return [
            BatchItem(email=payees[payee_id].email, amount=session.data["amounts"][payee_id], payee_id=payee_id)
            for payee_id in session.data["selected"]
        ]

    async def prompt_batch_confirm(self, session: SceneSession) -> Transition:
        await session.reply(
            format_batch_summary(self._batch_items(session)),
            reply_markup=_keyboard([InlineKeyboardButton("✅ Confirm", callback_data="confirm_batch")]),
        )
        return Transition.stay()

    async def handle_batch_confirm(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if scene_input.action != "confirm_batch":
            return await _use_buttons(session)
        items = self._batch_items(session)
        await session.edit_or_send("⏳ Processing your batch transfer...")
        response = await session.services.transfers.send_batch(session.user_id, items)
        await session.edit_or_send(summarize_batch_result(response, len(items)))
        return Transition.leave()
