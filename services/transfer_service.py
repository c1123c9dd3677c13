"""
Transfer Service - money movement and transfer history

Every money-moving call here is issued exactly once: failures propagate to the
calling flow, which ends the conversation rather than resubmitting. Amounts
arrive as ``Decimal`` and are scaled with ``to_api_amount``, which rejects
anything below the minimum before a request is built.

Bank withdrawals use two quotes. The public quote is for display only; the
signed quote is fetched again right before execution and its
``quotePayload``/``quoteSignature`` pair is submitted untouched.
"""

import json
import uuid
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from config import Config
from services.api_gateway import ApiGateway
from utils.exception_handler import RemoteApiError
from utils.input_validation import InputValidator, to_api_amount

logger = logging.getLogger(__name__)

DEFAULT_ARRIVAL_TIME = "1-3 Business days"
DEFAULT_TO_CURRENCY = "VND"


@dataclass
class BatchItem:
    email: str
    amount: Decimal
    payee_id: Optional[str] = None
    wallet_id: Optional[str] = None


@dataclass
class WithdrawalQuote:
    """Display view of a provisional bank withdrawal quote"""

    amount: Decimal
    to_amount: Decimal
    to_currency: str
    rate: Decimal
    fee: Decimal
    arrival_time: str


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value is not None else 0))
    except InvalidOperation:
        return Decimal(0)


def parse_quote(response: Dict[str, Any], amount: Decimal) -> WithdrawalQuote:
    """Decode the JSON ``quotePayload`` string of a quote response"""
    raw_payload = (response or {}).get("quotePayload") or "{}"
    try:
        payload = json.loads(raw_payload) if isinstance(raw_payload, str) else dict(raw_payload)
    except (TypeError, ValueError):
        logger.error(f"Unparseable quotePayload: {raw_payload!r}")
        raise RemoteApiError("Invalid quote response")

    return WithdrawalQuote(
        amount=amount,
        to_amount=_decimal(payload.get("toAmount")) / Config.AMOUNT_SCALE,
        to_currency=payload.get("toCurrency") or DEFAULT_TO_CURRENCY,
        rate=_decimal(payload.get("rate")),
        fee=_decimal(payload.get("totalFee")) / Config.AMOUNT_SCALE,
        arrival_time=response.get("arrivalTimeMessage") or DEFAULT_ARRIVAL_TIME,
    )


def build_transfer_request(
    email: str,
    amount: Decimal,
    payee_id: Optional[str] = None,
    wallet_id: Optional[str] = None,
    currency: str = Config.DEFAULT_CURRENCY,
) -> Dict[str, Any]:
    request = {
        "email": email,
        "amount": to_api_amount(amount),
        "purposeCode": Config.PURPOSE_CODE,
        "currency": currency,
    }
    if payee_id:
        request["payeeId"] = payee_id
    if wallet_id:
        request["walletId"] = wallet_id
    return request


def build_batch_payload(items: List[BatchItem]) -> Dict[str, Any]:
    """One request per item, each tagged with a fresh request id"""
    if not items:
        raise ValueError("Batch transfer needs at least one recipient")
    return {
        "requests": [
            {
                "requestId": str(uuid.uuid4()),
                "request": build_transfer_request(item.email, item.amount, item.payee_id, item.wallet_id),
            }
            for item in items
        ]
    }


class TransferService:
    """Sends, withdrawals, batches, quotes and history"""

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def send_to_email(
        self,
        user_id: int,
        email: str,
        amount: Decimal,
        payee_id: Optional[str] = None,
        wallet_id: Optional[str] = None,
        currency: str = Config.DEFAULT_CURRENCY,
    ) -> Dict[str, Any]:
        email = InputValidator.validate_email(email)
        payload = build_transfer_request(email, amount, payee_id, wallet_id, currency)
        logger.info(f"💸 SEND_EMAIL: user={user_id} to={email} amount={payload['amount']}")
        return await self.gateway.post("/api/transfers/send", user_id=user_id, payload=payload)

    async def withdraw_to_wallet(
        self,
        user_id: int,
        wallet_address: str,
        amount: Decimal,
        wallet_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        wallet_address = InputValidator.validate_wallet_address(wallet_address)
        payload = {
            "walletAddress": wallet_address,
            "amount": to_api_amount(amount),
            "purposeCode": Config.PURPOSE_CODE,
            "currency": Config.DEFAULT_CURRENCY,
        }
        if wallet_id:
            payload["walletId"] = wallet_id
        logger.info(f"💸 SEND_WALLET: user={user_id} to={wallet_address} amount={payload['amount']}")
        return await self.gateway.post("/api/transfers/wallet-withdraw", user_id=user_id, payload=payload)

    async def send_batch(self, user_id: int, items: List[BatchItem]) -> Any:
        payload = build_batch_payload(items)
        logger.info(f"💸 SEND_BATCH: user={user_id} recipients={len(payload['requests'])}")
        return await self.gateway.post("/api/transfers/send-batch", user_id=user_id, payload=payload)

    async def get_transactions(self, user_id: int, page: int = 1, limit: int = Config.TRANSACTIONS_PAGE_SIZE) -> List[Dict[str, Any]]:
        response = await self.gateway.get("/api/transfers", user_id=user_id, params={"page": page, "limit": limit})
        items = response.get("data") if isinstance(response, dict) else response
        return [item for item in (items or []) if isinstance(item, dict)]

    async def get_transaction(self, user_id: int, tx_id: str) -> Optional[Dict[str, Any]]:
        """Look a transaction up among the 100 most recent"""
        for transaction in await self.get_transactions(user_id, page=1, limit=100):
            if str(transaction.get("id")) == str(tx_id):
                return transaction
        return None

    def _quote_request(self, amount: Decimal, destination_country: str) -> Dict[str, Any]:
        return {
            "sourceCountry": "none",
            "destinationCountry": destination_country,
            "amount": to_api_amount(amount),
            "currency": Config.DEFAULT_CURRENCY,
        }

    async def get_public_quote(self, user_id: int, amount: Decimal, destination_country: str) -> WithdrawalQuote:
        """Provisional, display-only quote"""
        response = await self.gateway.post(
            "/api/quotes/public-offramp", user_id=user_id, payload=self._quote_request(amount, destination_country)
        )
        if not isinstance(response, dict):
            raise RemoteApiError("Invalid quote response")
        return parse_quote(response, amount)

    async def get_offramp_quote(self, user_id: int, amount: Decimal, destination_country: str) -> Dict[str, str]:
        """Authoritative signed quote, fetched immediately before execution"""
        response = await self.gateway.post(
            "/api/quotes/offramp", user_id=user_id, payload=self._quote_request(amount, destination_country)
        )
        if not isinstance(response, dict) or not response.get("quotePayload") or not response.get("quoteSignature"):
            logger.error("❌ OFFRAMP_QUOTE_INVALID: missing quotePayload or quoteSignature")
            raise RemoteApiError("Invalid quote response")
        return {"quotePayload": response["quotePayload"], "quoteSignature": response["quoteSignature"]}

    async def submit_offramp(self, user_id: int, signed_quote: Dict[str, str]) -> Dict[str, Any]:
        payload = {"quotePayload": signed_quote["quotePayload"], "quoteSignature": signed_quote["quoteSignature"]}
        logger.info(f"🏦 OFFRAMP_SUBMIT: user={user_id}")
        response = await self.gateway.post("/api/transfers/offramp", user_id=user_id, payload=payload)
        if not isinstance(response, dict) or not response.get("id"):
            raise RemoteApiError("Failed to initiate withdrawal")
        return response

    async def withdraw_to_bank(self, user_id: int, amount: Decimal, destination_country: str) -> Dict[str, Any]:
        """Fetch a signed quote and execute it"""
        signed_quote = await self.get_offramp_quote(user_id, amount, destination_country)
        response = await self.submit_offramp(user_id, signed_quote)
        return {**response, "quotePayload": signed_quote["quotePayload"]}
