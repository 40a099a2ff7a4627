"""Destination networks that can be topped up and the deposit assets offered for them."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class NetworkInfo:
    alias: str
    settle_coin: str          # SideShift "coin-network" id of the native gas asset
    network_name: str
    native_currency: str
    explorer_url: str
    chain_id: int
    address_chain: str        # slug understood by app.services.address


@dataclass(frozen=True)
class DepositAsset:
    coin: str
    network: str
    display: str
    min_amount: Decimal

    @property
    def pair_id(self) -> str:
        return f"{self.coin}-{self.network}"


_ETHEREUM = NetworkInfo("eth", "eth-ethereum", "Ethereum", "ETH", "https://etherscan.io", 1, "ethereum")
_BASE = NetworkInfo("base", "eth-base", "Base", "ETH", "https://basescan.org", 8453, "base")
_ARBITRUM = NetworkInfo("arb", "eth-arbitrum", "Arbitrum", "ETH", "https://arbiscan.io", 42161, "arbitrum")
_OPTIMISM = NetworkInfo("op", "eth-optimism", "Optimism", "ETH", "https://optimistic.etherscan.io", 10, "optimism")
_AVALANCHE = NetworkInfo("avax", "avax-avalanche", "Avalanche", "AVAX", "https://snowtrace.io", 43114, "avalanche")

NETWORK_MAP: Dict[str, NetworkInfo] = {
    "eth": _ETHEREUM,
    "base": _BASE,
    "arb": _ARBITRUM,
    "op": _OPTIMISM,
    "pol": NetworkInfo("pol", "pol-polygon", "Polygon", "POL", "https://polygonscan.com", 137, "polygon"),
    "polygon": NetworkInfo("polygon", "pol-polygon", "Polygon", "POL", "https://polygonscan.com", 137, "polygon"),
    # Legacy MATIC alias
    "matic": NetworkInfo("matic", "pol-polygon", "Polygon", "POL", "https://polygonscan.com", 137, "polygon"),
    "avax": _AVALANCHE,
}

# Deposit assets offered in the menu. Minimums are SideShift's observed
# floors; pairs outside this table fall back to the quote's own ``min``.
COMMON_DEPOSIT_ASSETS: Tuple[DepositAsset, ...] = (
    DepositAsset("usdc", "ethereum", "USDC (Ethereum)", Decimal("5.1")),
    DepositAsset("usdc", "base", "USDC (Base)", Decimal("5.1")),
    DepositAsset("usdt", "ethereum", "USDT (Ethereum)", Decimal("5.1")),
    DepositAsset("usdt", "polygon", "USDT (Polygon)", Decimal("5.1")),
    DepositAsset("eth", "ethereum", "ETH (Ethereum)", Decimal("0.002")),
    DepositAsset("btc", "bitcoin", "Bitcoin", Decimal("0.0002")),
)


def get_network_by_alias(alias: Optional[str]) -> Optional[NetworkInfo]:
    if not alias:
        return None
    return NETWORK_MAP.get(alias.strip().lower())


def get_supported_chains() -> List[str]:
    return list(NETWORK_MAP.keys())


def find_deposit_asset(coin: str, network: str) -> Optional[DepositAsset]:
    coin, network = coin.lower(), network.lower()
    for asset in COMMON_DEPOSIT_ASSETS:
        if asset.coin == coin and asset.network == network:
            return asset
    return None

