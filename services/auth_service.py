"""
Email OTP authentication against the wallet API

OTP sessions are kept per email address: a session is reused while it is
younger than ``OTP_EXPIRY_SECONDS`` so an accidental resubmission does not
trigger a second email, and each verification attempt counts against
``OTP_MAX_RETRIES``. Breaching the cap deletes the session, so the next
attempt fails even with the right code until a fresh OTP is requested.
Sessions past their expiry are evicted on the next request or verification.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config import Config
from services.api_gateway import ApiGateway
from services.credential_store import CredentialStore
from utils.exception_handler import OtpSessionError, RemoteApiError
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)

OTP_REQUEST_PATH = "/api/auth/email-otp/request"
OTP_AUTHENTICATE_PATH = "/api/auth/email-otp/authenticate"
REFRESH_PATH = "/api/auth/refresh"


@dataclass
class OtpSession:
    sid: str
    created_at: float
    retries: int = 0


def normalize_token_payload(data: Any) -> Dict[str, Any]:
    """Token fields from an auth response, unwrapping a nested ``data`` object"""
    if isinstance(data, dict) and not data.get("accessToken") and isinstance(data.get("data"), dict):
        logger.info("Found token in nested data structure, extracting...")
        data = data["data"]
    if not isinstance(data, dict) or not data.get("accessToken"):
        logger.error("Missing accessToken in authentication response")
        raise RemoteApiError("Authentication failed: Invalid token format")
    return dict(data)


class AuthService:
    """OTP login, token refresh and logout"""

    def __init__(
        self,
        gateway: ApiGateway,
        credentials: CredentialStore,
        otp_expiry_seconds: int = Config.OTP_EXPIRY_SECONDS,
        max_retries: int = Config.OTP_MAX_RETRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.otp_expiry_seconds = otp_expiry_seconds
        self.max_retries = max_retries
        self._clock = clock
        self._otp_sessions: Dict[str, OtpSession] = {}

    def get_otp_session(self, email: str) -> Optional[OtpSession]:
        return self._otp_sessions.get(email)

    def _evict_expired_sessions(self) -> None:
        now = self._clock()
        expired = [
            email for email, session in self._otp_sessions.items()
            if session.created_at + self.otp_expiry_seconds <= now
        ]
        for email in expired:
            del self._otp_sessions[email]
        if expired:
            logger.debug(f"🧹 OTP_SESSIONS_EVICTED: {len(expired)}")

    async def request_email_otp(self, email: str) -> str:
        """Request an OTP email; returns the session id to verify against"""
        email = InputValidator.validate_email(email)
        self._evict_expired_sessions()

        session = self._otp_sessions.get(email)
        if session:
            logger.info(f"Reusing existing OTP session for {email} with sid: {session.sid}")
            return session.sid

        response = await self.gateway.request(
            "POST", OTP_REQUEST_PATH, payload={"email": email}, rate_limit_key=email
        )
        sid = response.get("sid") if isinstance(response, dict) else None
        if not sid:
            logger.error(f"No sid in OTP response for {email}")
            raise RemoteApiError("No session ID received from server")

        self._otp_sessions[email] = OtpSession(sid=sid, created_at=self._clock())
        logger.info(f"📧 OTP_REQUESTED: email={email} sid={sid}")
        return sid

    async def verify_email_otp(self, user_id: int, email: str, otp: str, sid: str) -> Dict[str, Any]:
        """
        Verify the OTP and store the resulting token for ``user_id``.

        Raises:
            OtpSessionError: no matching session, or the retry cap is exhausted
            RemoteApiError: the API rejected the code (the session stays usable
                until the cap is reached)
        """
        self._evict_expired_sessions()
        session = self._otp_sessions.get(email)
        if session is None or session.sid != sid:
            raise OtpSessionError("Invalid or expired session. Please request a new OTP.")

        if session.retries >= self.max_retries:
            del self._otp_sessions[email]
            logger.warning(f"🚫 OTP_RETRIES_EXHAUSTED: email={email}")
            raise OtpSessionError("Too many failed attempts. Please request a new OTP.")

        session.retries += 1
        response = await self.gateway.request(
            "POST",
            OTP_AUTHENTICATE_PATH,
            payload={"email": email, "otp": otp, "sid": sid},
            rate_limit_key=email,
        )

        token = normalize_token_payload(response)
        self._otp_sessions.pop(email, None)
        stored = await self.credentials.store_token(user_id, token)
        logger.info(f"✅ AUTH_SUCCESS: email={email} user={user_id}")
        return stored

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new token payload"""
        response = await self.gateway.request(
            "POST", REFRESH_PATH, payload={"refreshToken": refresh_token}
        )
        return normalize_token_payload(response)

    async def is_logged_in(self, user_id: int) -> bool:
        return await self.credentials.get_token(user_id) is not None

    async def logout(self, user_id: int) -> None:
        await self.credentials.clear_session(user_id)
        logger.info(f"👋 LOGOUT: user={user_id}")
