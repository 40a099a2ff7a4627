"""
Top-up Session Models

A session tracks one user's progress through the order intake. No session
for a user means the conversation is idle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from ...providers.sideshift.models import Pair


class SessionStep(str, Enum):
    """Step of the order intake the user is currently in."""

    AWAITING_DEPOSIT_ASSET = "awaiting_deposit_asset"
    AWAITING_ADDRESS = "awaiting_address"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    step: SessionStep
    target_network: str
    target_amount: Decimal
    deposit_asset: Optional[str] = None        # "coin-network"
    settle_asset: Optional[str] = None         # "coin-network"
    quote: Optional[Pair] = None
    calculated_deposit_amount: Optional[str] = None
    calculated_settle_amount: Optional[str] = None
    external_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def touch(self) -> None:
        self.updated_at = _now()

    @property
    def target_context(self) -> str:
        """Token identifying this flow in deposit-asset buttons, e.g. ``base_0.01``."""
        return f"{self.target_network}_{self.target_amount:f}"
