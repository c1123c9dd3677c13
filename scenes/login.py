"""
Login Scene Definition

Email one-time-password login. After the code is accepted the session is
completed: profile and organization are looked up, KYC status is read and the
user's deposit relay is (re)connected.

Flow: Email Input → OTP Request → OTP Input → Verification → Welcome
"""

import logging
from enum import Enum

from services.profile_service import ProfileService
from services.scene_engine import Scene, SceneInput, SceneSession, SceneStatus, Transition, cancel_keyboard
from utils.exception_handler import OtpSessionError, RemoteApiError
from utils.input_validation import InputValidator
from utils.markdown_escaping import escape_markdown

logger = logging.getLogger(__name__)


class LoginStep(str, Enum):
    EMAIL = "email"
    OTP = "otp"


class LoginScene(Scene):
    scene_id = "login-scene"
    steps = (LoginStep.EMAIL, LoginStep.OTP)
    cancel_text = "Login cancelled. You can start again with /login."

    async def prompt_email(self, session: SceneSession) -> Transition:
        await session.reply(
            "🔐 *Login to your Copperx account*\n\nPlease enter your email address:",
            reply_markup=cancel_keyboard(),
        )
        return Transition.stay()

    async def handle_email(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return Transition.stay()
        email = InputValidator.validate_email(scene_input.text)

        await session.reply(f"📧 Sending a one-time password to {escape_markdown(email)}...")
        sid = await session.services.auth.request_email_otp(email)
        session.data.update({"email": email, "sid": sid})
        return Transition.advance()

    async def prompt_otp(self, session: SceneSession) -> Transition:
        await session.edit_or_send(
            f"✅ OTP sent to {escape_markdown(session.data['email'])}\n\n"
            "Please enter the 6-digit code from your email:",
            reply_markup=cancel_keyboard(),
        )
        return Transition.stay()

    async def handle_otp(self, session: SceneSession, scene_input: SceneInput) -> Transition:
        if not scene_input.text:
            return Transition.stay()
        otp = InputValidator.validate_otp(scene_input.text)

        await session.reply("🔄 Verifying your code...")
        try:
            token = await session.services.auth.verify_email_otp(
                session.user_id, session.data["email"], otp, session.data["sid"]
            )
        except OtpSessionError as e:
            await session.edit_or_send(f"❌ {e.message}\n\nUse /login to start again.", parse_mode=None)
            return Transition.leave(SceneStatus.FAILED)
        except RemoteApiError as e:
            logger.warning(f"OTP verification failed for user {session.user_id}: {e.message}")
            await session.edit_or_send(
                f"❌ Verification failed: {e.message}\n\nPlease enter the code again:",
                reply_markup=cancel_keyboard(),
                parse_mode=None,
            )
            return Transition.stay()

        await self.complete_login(session, token)
        return Transition.leave()

    async def complete_login(self, session: SceneSession, token: dict) -> None:
        services = session.services
        user_id = session.user_id

        profile = await services.profile.get_profile_or_default(user_id)
        organization_id = ProfileService.organization_id_of(profile)
        if organization_id:
            await services.credentials.store_organization_id(user_id, organization_id)
            await services.relays.replace(user_id, organization_id, token["accessToken"])
        else:
            logger.warning(f"No organization id in profile for user {user_id}; deposit alerts disabled")

        kyc_status = await services.kyc.get_status_label(user_id)
        name = escape_markdown(ProfileService.display_name(profile))
        await session.edit_or_send(
            f"✅ *Login successful!*\n\n"
            f"Welcome, {name}!\n"
            f"*KYC Status:* {kyc_status}\n\n"
            "Use /balance to see your wallets or /help for all commands."
        )
        logger.info(f"✅ LOGIN_COMPLETE: user={user_id} org={organization_id} kyc={kyc_status}")
