"""
KYC Service - verification status lookups
"""

import logging
from typing import Any, Dict, List, Optional

from services.api_gateway import ApiGateway
from utils.exception_handler import WalletBotError, NotAuthenticated, AuthExpired, RateLimited

logger = logging.getLogger(__name__)

STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"
STATUS_EXPIRED = "Expired"
STATUS_PENDING = "Pending"
STATUS_NOT_STARTED = "Not started"

STATUS_EMOJI = {
    STATUS_APPROVED: "✅",
    STATUS_REJECTED: "❌",
    STATUS_EXPIRED: "⏰",
    STATUS_PENDING: "⏳",
    STATUS_NOT_STARTED: "📝",
}


def map_kyc_status(raw_status: Optional[str]) -> str:
    """Collapse backend KYC states into the four categories users see"""
    status = (raw_status or "").lower()
    if status in ("verified", "approved"):
        return STATUS_APPROVED
    if status == "rejected":
        return STATUS_REJECTED
    if status == "expired":
        return STATUS_EXPIRED
    return STATUS_PENDING


class KycService:
    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def get_kyc_records(self, user_id: int) -> List[Dict[str, Any]]:
        response = await self.gateway.get("/api/kycs", user_id=user_id)
        if isinstance(response, dict):
            records = response.get("data") or []
        elif isinstance(response, list):
            records = response
        else:
            records = []
        return [record for record in records if isinstance(record, dict)]

    async def get_latest_record(self, user_id: int) -> Optional[Dict[str, Any]]:
        records = await self.get_kyc_records(user_id)
        return records[0] if records else None

    async def get_status_label(self, user_id: int) -> str:
        """Mapped status of the latest record; lookup failures read as Pending"""
        try:
            record = await self.get_latest_record(user_id)
        except (NotAuthenticated, AuthExpired, RateLimited):
            raise
        except WalletBotError as e:
            logger.error(f"Error getting KYC status: {e.message}")
            return STATUS_PENDING
        if record is None:
            return STATUS_NOT_STARTED
        return map_kyc_status(record.get("status"))
