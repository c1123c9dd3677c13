"""
Wallet Service - wallets, balances and the default wallet

The wallet and balance endpoints return either a bare list or an object with
a ``data`` list, and wallets carry their address as ``address`` or
``walletAddress``. Both variants are resolved here into ``Wallet`` and
``NetworkBalance`` records so flows never see the raw shapes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.api_gateway import ApiGateway

logger = logging.getLogger(__name__)


@dataclass
class Wallet:
    id: str
    network: str
    address: str = ""
    is_default: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Wallet":
        return cls(
            id=str(data.get("id", "")),
            network=str(data.get("network", "")),
            address=data.get("address") or data.get("walletAddress") or "",
            is_default=data.get("isDefault") is True,
        )


@dataclass
class TokenBalance:
    symbol: str
    balance: str


@dataclass
class NetworkBalance:
    network: str
    is_default: bool = False
    balances: List[TokenBalance] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "NetworkBalance":
        tokens = [
            TokenBalance(symbol=item.get("symbol") or "Unknown", balance=str(item.get("balance") or "0"))
            for item in (data.get("balances") or [])
            if isinstance(item, dict)
        ]
        return cls(network=str(data.get("network", "")), is_default=data.get("isDefault") is True, balances=tokens)


@dataclass
class WalletOverview:
    """Wallets joined with their per-network balances"""

    wallets: List[Wallet]
    balances: List[NetworkBalance]

    @property
    def default_wallet(self) -> Optional[Wallet]:
        for wallet in self.wallets:
            if wallet.is_default:
                return wallet
        return None

    def wallet_for_network(self, network: str) -> Optional[Wallet]:
        for wallet in self.wallets:
            if wallet.network == network:
                return wallet
        return None


def _as_list(response: Any, what: str) -> List[Dict[str, Any]]:
    if response is None:
        logger.warning(f"Empty response from {what} API")
        return []
    if isinstance(response, list):
        items = response
    elif isinstance(response, dict) and "data" in response:
        items = response.get("data") or []
    else:
        logger.error(f"Unexpected {what} response format: {type(response).__name__}")
        return []
    return [item for item in items if isinstance(item, dict)]


class WalletService:
    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def get_wallets(self, user_id: int) -> List[Wallet]:
        response = await self.gateway.get("/api/wallets", user_id=user_id)
        return [Wallet.from_api(item) for item in _as_list(response, "wallets")]

    async def get_balances(self, user_id: int) -> List[NetworkBalance]:
        response = await self.gateway.get("/api/wallets/balances", user_id=user_id)
        return [NetworkBalance.from_api(item) for item in _as_list(response, "wallet balances")]

    async def get_overview(self, user_id: int) -> WalletOverview:
        wallets = await self.get_wallets(user_id)
        balances = await self.get_balances(user_id) if wallets else []
        return WalletOverview(wallets=wallets, balances=balances)

    async def get_default_wallet(self, user_id: int) -> Optional[Wallet]:
        wallets = await self.get_wallets(user_id)
        for wallet in wallets:
            if wallet.is_default:
                return wallet
        return wallets[0] if wallets else None

    async def set_default_wallet(self, user_id: int, wallet_id: str) -> Any:
        logger.info(f"💳 SET_DEFAULT_WALLET: user={user_id} wallet={wallet_id}")
        return await self.gateway.post("/api/wallets/default", user_id=user_id, payload={"walletId": wallet_id})

    async def get_deposit_address(self, user_id: int, network: str) -> Optional[str]:
        for wallet in await self.get_wallets(user_id):
            if wallet.network == network:
                return wallet.address or None
        return None
