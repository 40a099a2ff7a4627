"""
SideShift Provider

Client for the SideShift v2 swap API: pair quotes, fixed quotes, shift
creation, status and cancellation.
"""

from .models import (
    CancelResult,
    CreateFixedShiftRequest,
    CreateVariableShiftRequest,
    FixedQuote,
    FixedQuoteRequest,
    Pair,
    Permissions,
    Shift,
    ShiftStatus,
    ShiftType,
)
from .client import SideShiftClient, get_sideshift_client

__all__ = [
    # Models
    "CancelResult",
    "CreateFixedShiftRequest",
    "CreateVariableShiftRequest",
    "FixedQuote",
    "FixedQuoteRequest",
    "Pair",
    "Permissions",
    "Shift",
    "ShiftStatus",
    "ShiftType",
    # Client
    "SideShiftClient",
    "get_sideshift_client",
]
