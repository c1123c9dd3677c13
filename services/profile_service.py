"""
Profile Service - account profile and organization lookups
"""

import logging
from typing import Any, Dict, Optional

from services.api_gateway import ApiGateway
from utils.exception_handler import WalletBotError, NotAuthenticated, AuthExpired, RateLimited

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = {"firstName": "User", "lastName": "", "email": ""}


class ProfileService:
    """Reads of ``/api/auth/me`` and ``/api/organizations/me``"""

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        profile = await self.gateway.get("/api/auth/me", user_id=user_id)
        if not isinstance(profile, dict):
            logger.warning(f"Unexpected profile response for user {user_id}: {type(profile).__name__}")
            return dict(DEFAULT_PROFILE)
        return profile

    async def get_profile_or_default(self, user_id: int) -> Dict[str, Any]:
        """
        Profile for display purposes; lookup failures fall back to a
        placeholder so login can complete. Auth and rate-limit errors still
        propagate since the caller cannot continue without a session anyway.
        """
        try:
            return await self.get_profile(user_id)
        except (NotAuthenticated, AuthExpired, RateLimited):
            raise
        except WalletBotError as e:
            logger.error(f"Error fetching user profile: {e.message}")
            return dict(DEFAULT_PROFILE)

    async def update_profile(self, user_id: int, profile_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.gateway.request("PUT", "/api/auth/me", user_id=user_id, payload=profile_data)

    async def get_organization(self, user_id: int) -> Optional[Dict[str, Any]]:
        organization = await self.gateway.get("/api/organizations/me", user_id=user_id)
        return organization if isinstance(organization, dict) else None

    @staticmethod
    def organization_id_of(profile: Dict[str, Any]) -> Optional[str]:
        organization_id = profile.get("organizationId") if profile else None
        return str(organization_id) if organization_id else None

    @staticmethod
    def display_name(profile: Dict[str, Any]) -> str:
        first = (profile or {}).get("firstName") or ""
        last = (profile or {}).get("lastName") or ""
        return f"{first} {last}".strip() or "User"
