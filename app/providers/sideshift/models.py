"""
SideShift Data Models

Request and response schemas for the SideShift v2 REST API. Requests are
validated before they are sent and responses before they are returned, so
callers only ever see payloads that match these shapes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ShiftStatus(str, Enum):
    """Lifecycle of a shift as reported by SideShift."""

    WAITING = "waiting"
    PENDING = "pending"
    PROCESSING = "processing"
    SETTLED = "settled"
    REFUNDING = "refunding"
    REFUNDED = "refunded"


class ShiftType(str, Enum):
    VARIABLE = "variable"
    FIXED = "fixed"


class _SideShiftModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize with SideShift's camelCase keys, dropping unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Responses
# =============================================================================


class Permissions(_SideShiftModel):
    """Jurisdiction/capability flags for the calling user."""

    create_shift: bool = Field(..., alias="createShift")
    affiliate: Optional[bool] = None
    request_quote: Optional[bool] = Field(None, alias="requestQuote")


class Pair(_SideShiftModel):
    """Variable-rate snapshot for a deposit → settle pair."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    min: str
    max: str
    rate: Optional[str] = None
    deposit_coin: str = Field(..., alias="depositCoin")
    settle_coin: str = Field(..., alias="settleCoin")
    deposit_network: str = Field(..., alias="depositNetwork")
    settle_network: str = Field(..., alias="settleNetwork")


class FixedQuote(_SideShiftModel):
    """Locked-rate quote that must be redeemed before ``expires_at``."""

    id: str
    created_at: datetime = Field(..., alias="createdAt")
    deposit_coin: str = Field(..., alias="depositCoin")
    deposit_network: str = Field(..., alias="depositNetwork")
    settle_coin: str = Field(..., alias="settleCoin")
    settle_network: str = Field(..., alias="settleNetwork")
    expires_at: datetime = Field(..., alias="expiresAt")
    deposit_amount: str = Field(..., alias="depositAmount")
    settle_amount: str = Field(..., alias="settleAmount")
    rate: str
    affiliate_id: Optional[str] = Field(None, alias="affiliateId")
    commission_rate: Optional[float] = Field(None, alias="commissionRate")


class Shift(_SideShiftModel):
    """An order tracked by SideShift."""

    id: str
    created_at: datetime = Field(..., alias="createdAt")
    deposit_coin: str = Field(..., alias="depositCoin")
    deposit_network: str = Field(..., alias="depositNetwork")
    settle_coin: str = Field(..., alias="settleCoin")
    settle_network: str = Field(..., alias="settleNetwork")
    deposit_address: str = Field(..., alias="depositAddress")
    settle_address: str = Field(..., alias="settleAddress")
    deposit_min: str = Field(..., alias="depositMin")
    deposit_max: str = Field(..., alias="depositMax")
    expires_at: datetime = Field(..., alias="expiresAt")
    status: ShiftStatus
    type: Optional[ShiftType] = None
    rate: Optional[str] = None
    deposit_memo: Optional[str] = Field(None, alias="depositMemo")
    settle_memo: Optional[str] = Field(None, alias="settleMemo")
    deposit_amount: Optional[str] = Field(None, alias="depositAmount")
    settle_amount: Optional[str] = Field(None, alias="settleAmount")
    external_id: Optional[str] = Field(None, alias="externalId")


class CancelResult(_SideShiftModel):
    message: str = "Order cancelled successfully"


# =============================================================================
# Requests
# =============================================================================


class PairRequest(_SideShiftModel):
    from_coin: str = Field(..., alias="from", min_length=1)
    to_coin: str = Field(..., alias="to", min_length=1)
    amount: Optional[str] = None


class CreateVariableShiftRequest(_SideShiftModel):
    deposit_coin: str = Field(..., alias="depositCoin", min_length=1)
    deposit_network: str = Field(..., alias="depositNetwork", min_length=1)
    settle_coin: str = Field(..., alias="settleCoin", min_length=1)
    settle_network: str = Field(..., alias="settleNetwork", min_length=1)
    settle_address: str = Field(..., alias="settleAddress", min_length=1)
    settle_memo: Optional[str] = Field(None, alias="settleMemo")
    refund_address: Optional[str] = Field(None, alias="refundAddress")
    refund_memo: Optional[str] = Field(None, alias="refundMemo")
    affiliate_id: Optional[str] = Field(None, alias="affiliateId")
    commission_rate: Optional[float] = Field(None, alias="commissionRate", ge=0)
    external_id: Optional[str] = Field(None, alias="externalId")


class FixedQuoteRequest(_SideShiftModel):
    deposit_coin: str = Field(..., alias="depositCoin", min_length=1)
    deposit_network: str = Field(..., alias="depositNetwork", min_length=1)
    settle_coin: str = Field(..., alias="settleCoin", min_length=1)
    settle_network: str = Field(..., alias="settleNetwork", min_length=1)
    deposit_amount: Optional[str] = Field(None, alias="depositAmount")
    settle_amount: Optional[str] = Field(None, alias="settleAmount")
    affiliate_id: Optional[str] = Field(None, alias="affiliateId")
    commission_rate: Optional[float] = Field(None, alias="commissionRate", ge=0)

    @model_validator(mode="after")
    def _one_amount(self) -> "FixedQuoteRequest":
        if not self.deposit_amount and not self.settle_amount:
            raise ValueError("either depositAmount or settleAmount is required")
        return self


class CreateFixedShiftRequest(_SideShiftModel):
    quote_id: str = Field(..., alias="quoteId", min_length=1)
    settle_address: str = Field(..., alias="settleAddress", min_length=1)
    settle_memo: Optional[str] = Field(None, alias="settleMemo")
    refund_address: Optional[str] = Field(None, alias="refundAddress")
    refund_memo: Optional[str] = Field(None, alias="refundMemo")
    affiliate_id: Optional[str] = Field(None, alias="affiliateId")
    external_id: Optional[str] = Field(None, alias="externalId")


class CancelOrderRequest(_SideShiftModel):
    order_id: str = Field(..., alias="orderId", min_length=1)


class RefundAddressRequest(_SideShiftModel):
    address: str = Field(..., min_length=1)
    memo: Optional[str] = None
