"""
Payee Scene Definition

Saves a new recipient.

Flow: Email Input → Nickname Input (optional) → Save

When entered from the transfer flow the scene hands the chat back to it
after saving (``then``/``then_data`` in the data bag).
"""

import logging
from enum import Enum

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from services.payee_service import default_nickname
from services.scene_engine import Scene, SceneInput, SceneSession, Transition, cancel_button, cancel_keyboard
from utils.input_validation import InputValidator
from utils.markdown_escaping import escape_markdown

logger = logging.getLogger(__name__)


class PayeeStep(str, Enum):
    EMAIL = "email"
    NICKNAME = "nickname"


class PayeeAddScene(Scene):
    scene_id = "payee-add-scene"
    steps = (PayeeStep.EMAIL, PayeeStep.NICKNAME)
    actions = ("payee_skip_nickname",)
    cancel_text = "Adding payee cancelled."

    async def prompt_email(self, session: SceneSession) -> Transition:
        await session.edit_or_send(
            "➕ *Add New Payee*\n\nPlease enter the payee's email address:",
            reply_markup=cancel_keyboard(),
        )
        return Transition.stay()

    async def handle_email(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return Transition.stay()
        session.data["email"] = InputValidator.validate_email(scene_input.text)
        return Transition.advance()

    async def prompt_nickname(self, session: SceneSession) -> Transition:
        email = session.data["email"]
        await session.reply(
            f"Enter a nickname for {escape_markdown(email)}, or skip to use "
            f"*{escape_markdown(default_nickname(email))}*:",
            reply_markup=InlineKeyboardMarkup([
                [InlineKeyboardButton("⏭️ Skip", callback_data="payee_skip_nickname")],
                [cancel_button()],
            ]),
        )
        return Transition.stay()

    async def handle_nickname(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if scene_input.action == "payee_skip_nickname":
            nickname = None
        elif scene_input.text and scene_input.text.strip():
            nickname = scene_input.text.strip()
        else:
            return Transition.stay()

        email = session.data["email"]
        await session.services.payees.add_payee(session.user_id, email, nickname)
        label = nickname or default_nickname(email)
        logger.info(f"➕ PAYEE_ADDED: user={session.user_id} email={email}")
        await session.reply(f"✅ Payee *{escape_markdown(label)}* ({escape_markdown(email)}) added successfully!")

        next_scene = session.data.get("then")
        if next_scene:
            return Transition.switch(next_scene, session.data.get("then_data"))
        return Transition.leave()
