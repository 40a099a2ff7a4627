"""
SideShift API Client

Async client for the SideShift v2 REST API (https://sideshift.ai/api/v2).
Every call validates its outbound payload and the provider's response
against the schemas in ``models``; transport and HTTP failures surface as
``SideShiftError`` with a coarse ``ErrorCode``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Type, TypeVar, Union
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from ...config import settings
from ...core.topup.errors import ErrorCode, SideShiftError, code_for_status
from .models import (
    CancelOrderRequest,
    CancelResult,
    CreateFixedShiftRequest,
    CreateVariableShiftRequest,
    FixedQuote,
    FixedQuoteRequest,
    Pair,
    PairRequest,
    Permissions,
    RefundAddressRequest,
    Shift,
)

logger = structlog.stdlib.get_logger("sideshift")

ModelT = TypeVar("ModelT", bound=BaseModel)
RequestInput = Union[BaseModel, Mapping[str, Any]]

TOO_EARLY_MESSAGE = "Cannot cancel order yet. Orders can only be cancelled after 5 minutes."
ORDER_NOT_FOUND_MESSAGE = "Order not found or already completed."
QUOTE_EXPIRED_MESSAGE = "Quote has expired. Request a new quote before creating the shift."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _schema_summary(exc: SchemaValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "body"
        parts.append(f"{location}: {err.get('msg', 'invalid')}")
    return ", ".join(parts) or "validation failed"


class SideShiftClient:
    """Thin wrapper around the SideShift endpoints used by the top-up flow."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        affiliate_id: Optional[str] = None,
        commission_rate: Optional[float] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_url = (base_url or settings.sideshift_base_url).rstrip("/")
        self.secret = secret if secret is not None else settings.sideshift_secret
        self.affiliate_id = affiliate_id if affiliate_id is not None else settings.sideshift_affiliate_id
        self.commission_rate = (
            commission_rate if commission_rate is not None else settings.sideshift_commission_rate
        )
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self._transport = transport
        self._clock = clock
        # quote id -> expiry of fixed quotes issued through this client
        self._issued_quotes: Dict[str, datetime] = {}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, user_ip: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": "GasTopupBot/1.0",
        }
        if self.secret:
            headers["x-sideshift-secret"] = self.secret
        if user_ip:
            headers["x-user-ip"] = user_ip
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        user_ip: Optional[str] = None,
    ) -> httpx.Response:
        logger.debug("sideshift_request", method=method, path=path, user_ip=user_ip)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers=self._headers(user_ip),
                )
        except httpx.RequestError as exc:
            logger.error("sideshift_network_error", method=method, path=path, user_ip=user_ip, error=str(exc))
            raise SideShiftError(None, "Network error", ErrorCode.NETWORK_ERROR) from exc

        if response.status_code >= 400:
            details = self._error_details(response)
            logger.error(
                "sideshift_error_response",
                method=method,
                path=path,
                status=response.status_code,
                response=details,
                user_ip=user_ip,
            )
            raise SideShiftError(
                response.status_code,
                self._error_message(details),
                code_for_status(response.status_code),
                details,
            )

        logger.debug("sideshift_request_ok", method=method, path=path, status=response.status_code, user_ip=user_ip)
        return response

    @staticmethod
    def _error_details(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        if isinstance(body, dict):
            return body
        return {"message": str(body)}

    @staticmethod
    def _error_message(details: Mapping[str, Any]) -> str:
        error = details.get("error")
        if isinstance(error, Mapping):
            error = error.get("message")
        message = details.get("message") or error
        if isinstance(message, str) and message.strip():
            return message
        return "Unknown error"

    # ------------------------------------------------------------------
    # Schema validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_request(model: Type[ModelT], data: RequestInput) -> ModelT:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        try:
            return model.model_validate(data)
        except SchemaValidationError as exc:
            summary = _schema_summary(exc)
            raise SideShiftError(
                None,
                f"Invalid {model.__name__}: {summary}",
                ErrorCode.VALIDATION_ERROR,
                {"message": f"Invalid request data: {summary}"},
            ) from exc

    @staticmethod
    def _parse_response(model: Type[ModelT], response: httpx.Response) -> ModelT:
        try:
            data = response.json()
        except ValueError as exc:
            raise SideShiftError(
                response.status_code,
                "SideShift returned a non-JSON response",
                ErrorCode.INVALID_RESPONSE,
            ) from exc
        try:
            return model.model_validate(data)
        except SchemaValidationError as exc:
            logger.error("sideshift_schema_mismatch", model=model.__name__, errors=_schema_summary(exc))
            raise SideShiftError(
                response.status_code,
                f"Unexpected {model.__name__} response from SideShift",
                ErrorCode.INVALID_RESPONSE,
            ) from exc

    def _with_affiliate(self, model: Type[ModelT], request: ModelT, *, commission: bool = True) -> ModelT:
        """Merge the configured affiliate id / commission rate into ``request``."""

        updates: Dict[str, Any] = {}
        if not getattr(request, "affiliate_id", None) and self.affiliate_id:
            updates["affiliate_id"] = self.affiliate_id
        affiliate = updates.get("affiliate_id") or getattr(request, "affiliate_id", None)
        # SideShift only accepts a commission rate alongside an affiliate id
        if commission and affiliate and getattr(request, "commission_rate", None) is None:
            updates["commission_rate"] = self.commission_rate
        if not updates:
            return request
        return self._validate_request(model, {**request.model_dump(), **updates})

    def _has_expired(self, expires_at: datetime) -> bool:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= self._clock()

    def _prune_expired_quotes(self) -> None:
        for quote_id in [q for q, exp in self._issued_quotes.items() if self._has_expired(exp)]:
            del self._issued_quotes[quote_id]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_permissions(self, user_ip: Optional[str] = None) -> Permissions:
        """Check whether the caller may create shifts from their jurisdiction."""

        resp = await self._request("GET", "/permissions", user_ip=user_ip)
        return self._parse_response(Permissions, resp)

    async def get_pair(self, from_coin: str, to_coin: str, amount: Optional[str] = None) -> Pair:
        """Fetch the variable rate and min/max for ``from_coin`` → ``to_coin``.

        Coins use SideShift's ``coin-network`` form, e.g. ``usdc-ethereum``.
        """

        req = self._validate_request(
            PairRequest, {"from": from_coin, "to": to_coin, "amount": amount}
        )
        params: Dict[str, Any] = {}
        if req.amount:
            params["amount"] = req.amount
        if self.affiliate_id:
            params["affiliateId"] = self.affiliate_id
            if self.commission_rate:
                params["commissionRate"] = str(self.commission_rate)

        path = f"/pair/{quote(req.from_coin, safe='')}/{quote(req.to_coin, safe='')}"
        resp = await self._request("GET", path, params=params or None)
        return self._parse_response(Pair, resp)

    async def create_variable_shift(
        self,
        request: RequestInput,
        user_ip: Optional[str] = None,
    ) -> Shift:
        req = self._validate_request(CreateVariableShiftRequest, request)
        req = self._with_affiliate(CreateVariableShiftRequest, req)
        resp = await self._request("POST", "/shifts/variable", json=req.to_payload(), user_ip=user_ip)
        return self._parse_response(Shift, resp)

    async def get_shift(self, shift_id: str, user_ip: Optional[str] = None) -> Shift:
        if not shift_id or not shift_id.strip():
            raise SideShiftError(
                None,
                "Shift id is required",
                ErrorCode.VALIDATION_ERROR,
                {"message": "Shift id is required"},
            )
        resp = await self._request("GET", f"/shifts/{quote(shift_id.strip(), safe='')}", user_ip=user_ip)
        return self._parse_response(Shift, resp)

    async def request_fixed_quote(
        self,
        request: RequestInput,
        user_ip: Optional[str] = None,
    ) -> FixedQuote:
        req = self._validate_request(FixedQuoteRequest, request)
        req = self._with_affiliate(FixedQuoteRequest, req)
        resp = await self._request("POST", "/quotes", json=req.to_payload(), user_ip=user_ip)
        fixed = self._parse_response(FixedQuote, resp)
        self._prune_expired_quotes()
        self._issued_quotes[fixed.id] = fixed.expires_at
        return fixed

    async def create_fixed_shift(
        self,
        request: RequestInput,
        user_ip: Optional[str] = None,
    ) -> Shift:
        """Redeem a fixed quote. Expired quotes are refused, never re-quoted."""

        req = self._validate_request(CreateFixedShiftRequest, request)
        expires_at = self._issued_quotes.get(req.quote_id)
        if expires_at is not None:
            if self._has_expired(expires_at):
                self._issued_quotes.pop(req.quote_id, None)
                raise SideShiftError(
                    None,
                    QUOTE_EXPIRED_MESSAGE,
                    ErrorCode.QUOTE_EXPIRED,
                    {"message": QUOTE_EXPIRED_MESSAGE, "quoteId": req.quote_id},
                )

        req = self._with_affiliate(CreateFixedShiftRequest, req, commission=False)
        resp = await self._request("POST", "/shifts/fixed", json=req.to_payload(), user_ip=user_ip)
        shift = self._parse_response(Shift, resp)
        self._issued_quotes.pop(req.quote_id, None)
        return shift

    async def cancel_order(self, order_id: str, user_ip: Optional[str] = None) -> CancelResult:
        """Cancel a waiting order. SideShift refuses orders younger than 5 minutes."""

        req = self._validate_request(CancelOrderRequest, {"orderId": order_id})
        try:
            await self._request("POST", "/cancel-order", json=req.to_payload(), user_ip=user_ip)
        except SideShiftError as exc:
            if exc.status == 400:
                raise SideShiftError(400, TOO_EARLY_MESSAGE, ErrorCode.TOO_EARLY, exc.details) from exc
            if exc.status == 404:
                raise SideShiftError(404, ORDER_NOT_FOUND_MESSAGE, ErrorCode.NOT_FOUND, exc.details) from exc
            raise
        return CancelResult()

    async def set_refund_address(
        self,
        shift_id: str,
        address: str,
        memo: Optional[str] = None,
        user_ip: Optional[str] = None,
    ) -> Shift:
        req = self._validate_request(RefundAddressRequest, {"address": address, "memo": memo})
        path = f"/shifts/{quote(shift_id, safe='')}/set-refund-address"
        resp = await self._request("POST", path, json=req.to_payload(), user_ip=user_ip)
        return self._parse_response(Shift, resp)

    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        try:
            permissions = await self.get_permissions()
        except SideShiftError as exc:
            return {"status": "unavailable", "error": exc.code.value}
        return {"status": "healthy", "create_shift": permissions.create_shift}


_client_instance: Optional[SideShiftClient] = None


def get_sideshift_client() -> SideShiftClient:
    """Get singleton SideShift client instance."""
    global _client_instance
    if _client_instance is None:
        _client_instance = SideShiftClient()
    return _client_instance
