"""Helpers for normalizing chain identifiers and validating settle addresses."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

_BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_BTC_LEGACY_RE = re.compile(r"^1[a-km-zA-HJ-NP-Z1-9]{25,34}$")
_BTC_P2SH_RE = re.compile(r"^3[a-km-zA-HJ-NP-Z1-9]{25,34}$")
_BTC_BECH32_RE = re.compile(r"^bc1[a-z0-9]{39,59}$")
_UNSAFE_CHARS_RE = re.compile(r"[<>\"'&\s]")

_CHAIN_ALIASES = {
    "eth": "ethereum",
    "ethereum": "ethereum",
    "mainnet": "ethereum",
    "base": "base",
    "base-mainnet": "base",
    "arb": "arbitrum",
    "arbitrum": "arbitrum",
    "op": "optimism",
    "optimism": "optimism",
    "pol": "polygon",
    "matic": "polygon",
    "polygon": "polygon",
    "avax": "avalanche",
    "avalanche": "avalanche",
    "btc": "bitcoin",
    "bitcoin": "bitcoin",
    "sol": "solana",
    "solana": "solana",
}

_EVM_CHAINS = {
    "ethereum",
    "base",
    "arbitrum",
    "optimism",
    "polygon",
    "avalanche",
}

_EVM_EXAMPLE = "0x742d35cc6634C0532925a3b8D431ED81C31Bb3E1"

_EXAMPLE_ADDRESSES = {
    "bitcoin": "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa",
    "solana": "So11111111111111111111111111111111111111112",
}


@dataclass(frozen=True)
class AddressValidation:
    is_valid: bool
    chain: Optional[str] = None
    format: Optional[str] = None
    error: Optional[str] = None


def normalize_chain(chain: str | None) -> str:
    """Collapse user-provided chain identifiers into canonical slugs."""

    if not chain:
        return "ethereum"
    canonical = _CHAIN_ALIASES.get(chain.lower().strip())
    return canonical or chain.lower().strip()


def is_evm_chain(chain: str) -> bool:
    return normalize_chain(chain) in _EVM_CHAINS


@lru_cache(maxsize=128)
def is_valid_solana_address(address: str) -> bool:
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    return all(ch in _BASE58_ALPHABET for ch in address)


def bitcoin_address_format(address: str) -> Optional[str]:
    """Return the bitcoin address flavour (legacy, p2sh, bech32) or None."""

    if _BTC_LEGACY_RE.fullmatch(address):
        return "legacy"
    if _BTC_P2SH_RE.fullmatch(address):
        return "p2sh"
    if _BTC_BECH32_RE.fullmatch(address):
        return "bech32"
    return None


def validate_address(address: str | None, chain: str) -> AddressValidation:
    """Check that ``address`` is well formed for ``chain``.

    Only the textual format is checked; nothing here proves the address
    exists or is controlled by the user.
    """

    cleaned = (address or "").strip()
    if not cleaned:
        return AddressValidation(is_valid=False, error="Address cannot be empty.")

    slug = normalize_chain(chain)

    if slug in _EVM_CHAINS:
        if not _EVM_ADDRESS_RE.fullmatch(cleaned):
            return AddressValidation(
                is_valid=False,
                chain=slug,
                error="Invalid EVM address format. Should be 0x followed by 40 hex characters.",
            )
        return AddressValidation(is_valid=True, chain=slug, format="hex")

    if slug == "bitcoin":
        flavour = bitcoin_address_format(cleaned)
        if flavour is None:
            return AddressValidation(
                is_valid=False,
                chain=slug,
                error="Invalid Bitcoin address format. Should start with 1, 3, or bc1.",
            )
        return AddressValidation(is_valid=True, chain=slug, format=flavour)

    if slug == "solana":
        if not is_valid_solana_address(cleaned):
            return AddressValidation(
                is_valid=False,
                chain=slug,
                error="Invalid Solana address format. Should be 32-44 base58 characters.",
            )
        return AddressValidation(is_valid=True, chain=slug, format="base58")

    # Unknown chains only get a sanity check.
    if len(cleaned) < 20 or len(cleaned) > 100:
        return AddressValidation(
            is_valid=False,
            chain=slug,
            error="Address length should be between 20-100 characters.",
        )
    if _UNSAFE_CHARS_RE.search(cleaned):
        return AddressValidation(
            is_valid=False,
            chain=slug,
            error="Address contains invalid characters.",
        )
    return AddressValidation(is_valid=True, chain=slug, format="unknown")


def is_valid_address_for_chain(address: str, chain: str) -> bool:
    return validate_address(address, chain).is_valid


def example_address(chain: str) -> str:
    slug = normalize_chain(chain)
    if slug in _EVM_CHAINS:
        return _EVM_EXAMPLE
    return _EXAMPLE_ADDRESSES.get(slug, "Enter your wallet address")


__all__ = [
    "AddressValidation",
    "normalize_chain",
    "is_evm_chain",
    "is_valid_solana_address",
    "bitcoin_address_format",
    "validate_address",
    "is_valid_address_for_chain",
    "example_address",
]
