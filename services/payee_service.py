"""
Payee Service - saved recipients
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from services.api_gateway import ApiGateway
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)


@dataclass
class Payee:
    id: str
    email: str
    nickname: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Payee":
        return cls(
            id=str(data.get("id", "")),
            email=data.get("email") or "",
            nickname=data.get("nickName") or data.get("nickname") or "",
        )

    @property
    def label(self) -> str:
        return self.nickname or self.email


def default_nickname(email: str) -> str:
    """The local part of the email address"""
    return email.split("@", 1)[0]


class PayeeService:
    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def list_payees(self, user_id: int, page: int = 1, limit: int = 10) -> List[Payee]:
        response = await self.gateway.get("/api/payees", user_id=user_id, params={"page": page, "limit": limit})
        if not response:
            logger.warning(f"Empty response from payees API for user {user_id}")
            return []
        items = response.get("data") if isinstance(response, dict) else response
        return [Payee.from_api(item) for item in (items or []) if isinstance(item, dict)]

    async def add_payee(self, user_id: int, email: str, nickname: Optional[str] = None) -> Any:
        email = InputValidator.validate_email(email)
        nickname = (nickname or "").strip() or default_nickname(email)
        payload = {"nickName": nickname, "email": email}
        logger.info(f"Adding new payee with payload: {payload}")
        return await self.gateway.post("/api/payees", user_id=user_id, payload=payload)

    async def get_payee(self, user_id: int, payee_id: str) -> Optional[Payee]:
        response = await self.gateway.get(f"/api/payees/{payee_id}", user_id=user_id)
        return Payee.from_api(response) if isinstance(response, dict) else None

    async def delete_payee(self, user_id: int, payee_id: str) -> None:
        await self.gateway.request("DELETE", f"/api/payees/{payee_id}", user_id=user_id)
        logger.info(f"🗑️ PAYEE_DELETED: user={user_id} payee={payee_id}")
