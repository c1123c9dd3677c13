"""
Withdrawal Scene Definition

Bank withdrawal of USDC (off-ramp).

Flow: Amount Input → Provisional Quote → Confirmation → Signed Quote + Execution

The quote shown to the user is display-only. Confirming fetches a fresh signed
quote and submits it as-is; that submit is never retried.
"""

import logging
from enum import Enum
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from config import Config
from services.scene_engine import Scene, SceneInput, SceneSession, Transition, cancel_button, cancel_keyboard
from utils.exception_handler import AuthExpired, NotAuthenticated, WalletBotError
from utils.formatting import format_quote_summary, format_withdrawal_result
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)


class WithdrawalStep(str, Enum):
    AMOUNT_ENTRY = "amount_entry"
    QUOTE = "quote"


class WithdrawalScene(Scene):
    scene_id = "withdrawal-scene"
    steps = (WithdrawalStep.AMOUNT_ENTRY, WithdrawalStep.QUOTE)
    actions = ("confirm_withdrawal", "quote_retry")
    cancel_text = "Withdrawal cancelled. You can start again with /withdraw."

    async def prompt_amount_entry(self, session: SceneSession) -> Transition:
        await session.reply(
            "🏦 *Withdraw to Bank*\n\nPlease enter the amount of USDC you want to withdraw (minimum 0.1):",
            reply_markup=cancel_keyboard(),
        )
        return Transition.stay()

    async def handle_amount_entry(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return Transition.stay()
        session.data["amount"] = InputValidator.validate_amount(scene_input.text)
        return Transition.advance()

    async def _destination_country(self, session: SceneSession) -> str:
        country: Optional[str] = session.data.get("country")
        if country:
            return country
        try:
            profile = await session.services.profile.get_profile(session.user_id)
        except (NotAuthenticated, AuthExpired):
            raise
        except WalletBotError as e:
            logger.warning(f"Profile lookup failed for user {session.user_id}, using default country: {e.message}")
            profile = {}
        country = str(profile.get("countryCode") or Config.DEFAULT_WITHDRAWAL_COUNTRY).lower()
        session.data["country"] = country
        return country

    async def prompt_quote(self, session: SceneSession) -> Transition:
        amount = session.data["amount"]
        await session.edit_or_send("⏳ Getting withdrawal quote...")
        country = await self._destination_country(session)
        try:
            quote = await session.services.transfers.get_public_quote(session.user_id, amount, country)
        except (NotAuthenticated, AuthExpired):
            raise
        except WalletBotError as e:
            logger.warning(f"Quote failed for user {session.user_id}: {e.message}")
            await session.edit_or_send(
                f"❌ Error getting withdrawal quote: {e.message}",
                reply_markup=InlineKeyboardMarkup([
                    [InlineKeyboardButton("🔄 Try Again", callback_data="quote_retry")],
                    [cancel_button()],
                ]),
                parse_mode=None,
            )
            return Transition.stay()

        await session.edit_or_send(
            format_quote_summary(quote),
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("✅ Confirm Withdrawal", callback_data="confirm_withdrawal")],
                [cancel_button()],
            ]),
        )
        return Transition.stay()

    async def handle_quote(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if scene_input.action == "quote_retry":
            return Transition.goto(WithdrawalStep.QUOTE)
        if scene_input.action != "confirm_withdrawal":
            await session.reply("Please confirm or cancel the withdrawal using the buttons above.")
            return Transition.stay()

        await session.edit_or_send("⏳ Processing your withdrawal...")
        response = await session.services.transfers.withdraw_to_bank(
            session.user_id, session.data["amount"], session.data["country"]
        )
        logger.info(f"🏦 WITHDRAWAL_COMPLETE: user={session.user_id} id={response.get('id')}")
        await session.edit_or_send(format_withdrawal_result(response))
        return Transition.leave()
