"""
Top-up Orchestrator

Conversation state machine for a gas top-up:

    Idle --initiate--> AwaitingDepositAsset --select--> AwaitingAddress
         --submit address--> order created (Idle)

``cancelFlow`` returns to Idle from any step. Status checks and order
cancellation are stateless. Every command for a user runs under that
user's lock, and every failure becomes exactly one error reply.
"""

import hashlib
import logging
import math
import secrets
import time
from dataclasses import replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional

from ...config import settings
from ...providers.sideshift import SideShiftClient, get_sideshift_client
from ...providers.sideshift.models import CreateVariableShiftRequest, Pair, Shift, ShiftStatus
from ...services.address import example_address, validate_address
from .commands import (
    CancelFlow,
    CancelOrder,
    CheckStatus,
    Command,
    Initiate,
    SelectDepositAsset,
    ShowHelp,
    SubmitAddress,
    Unrecognized,
)
from .errors import (
    ErrorCode,
    ForbiddenError,
    ServiceUnavailableError,
    SessionCorruptionError,
    SideShiftError,
    TopupError,
    ValidationError,
)
from .models import Session, SessionStep
from .networks import (
    COMMON_DEPOSIT_ASSETS,
    NetworkInfo,
    find_deposit_asset,
    get_network_by_alias,
    get_supported_chains,
)
from .normalizer import normalize
from .replies import Reply, ReplyKind
from .store import InMemorySessionStore, SessionStore, UserLocks

logger = logging.getLogger(__name__)

SIX_PLACES = Decimal("0.000001")
FOUR_PLACES = Decimal("0.0001")

MAX_TARGET_AMOUNT = Decimal("1000000")
MAX_AMOUNT_DECIMALS = 18
# Telegram rejects inline buttons whose callback_data exceeds 64 bytes
CALLBACK_DATA_LIMIT = 64

_FAILURE_TITLES: Dict[type, str] = {
    Initiate: "Cannot start top-up",
    SelectDepositAsset: "Error getting quote",
    SubmitAddress: "Error creating order",
    CheckStatus: "Error checking status",
    CancelOrder: "Cancellation failed",
    ShowHelp: "Cannot start top-up",
}

_STATUS_LABELS: Dict[ShiftStatus, str] = {
    ShiftStatus.WAITING: "⏳ Waiting for deposit",
    ShiftStatus.PENDING: "🔄 Deposit received, processing...",
    ShiftStatus.PROCESSING: "⚙️ Processing transaction",
    ShiftStatus.SETTLED: "✅ Completed successfully!",
    ShiftStatus.REFUNDING: "🔄 Refunding deposit",
    ShiftStatus.REFUNDED: "💸 Deposit refunded",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fmt(value: Decimal) -> str:
    return f"{value:f}"


def _parse_decimal(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _quantize(value: Decimal, exp: Decimal) -> Optional[Decimal]:
    try:
        return value.quantize(exp, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def _normalize_amount(amount: Decimal) -> Optional[Decimal]:
    """Canonical form of a target amount, or None when it is out of range.

    ``0.0100`` becomes ``0.01``. Amounts with more precision than the decimal
    context holds, more than 18 decimal places or above the cap are refused.
    """

    normalized = amount.normalize()
    if normalized != amount or normalized > MAX_TARGET_AMOUNT:
        return None
    if -normalized.as_tuple().exponent > MAX_AMOUNT_DECIMALS:
        return None
    return normalized


def new_external_id(user_id: int, pair_id: str) -> str:
    """Idempotency token sent to SideShift as ``externalId``."""
    data = f"{user_id}|{pair_id}|{time.time_ns()}|{secrets.token_hex(8)}"
    return hashlib.sha256(data.encode()).hexdigest()[:32]


class TopupOrchestrator:
    """Drives one user's top-up conversation from command to replies."""

    def __init__(
        self,
        store: SessionStore,
        client: SideShiftClient,
        locks: Optional[UserLocks] = None,
        affiliate_id: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.client = client
        self.locks = locks or UserLocks()
        self.affiliate_id = affiliate_id or None
        self._clock = clock

    async def handle(self, command: Command) -> List[Reply]:
        """Process ``command`` and return the replies to send, in order."""

        async with self.locks.hold(command.user_id):
            try:
                return await self._dispatch(command)
            except TopupError as exc:
                if exc.clears_session:
                    await self.store.delete(command.user_id)
                logger.warning(
                    f"{type(command).__name__} for user {command.user_id} failed: "
                    f"{exc.code.value} {exc.message}"
                )
                return [self._error_reply(command, exc)]
            except SideShiftError as exc:
                logger.error(f"{type(command).__name__} for user {command.user_id} failed: {exc!r}")
                return [self._error_reply(command, exc)]
            except Exception as exc:
                logger.error(
                    f"Unexpected error handling {type(command).__name__} for user {command.user_id}: {exc}",
                    exc_info=True,
                )
                return [self._error_reply(command, exc)]

    async def _dispatch(self, command: Command) -> List[Reply]:
        if isinstance(command, Initiate):
            return await self._initiate(command)
        if isinstance(command, SelectDepositAsset):
            return await self._select_deposit_asset(command)
        if isinstance(command, SubmitAddress):
            return await self._submit_address(command)
        if isinstance(command, CheckStatus):
            return await self._check_status(command)
        if isinstance(command, CancelOrder):
            return await self._cancel_order(command)
        if isinstance(command, CancelFlow):
            return await self._cancel_flow(command)
        if isinstance(command, ShowHelp):
            return self._show_help(command)
        return [self._unrecognized_reply()]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _initiate(self, command: Initiate) -> List[Reply]:
        network = get_network_by_alias(command.chain)
        if network is None:
            raise ValidationError(
                f"Unsupported chain: {command.chain}",
                hint=f"Supported chains: {', '.join(get_supported_chains())}",
            )

        amount = _parse_decimal(command.amount)
        if amount is None or amount <= 0:
            raise ValidationError(
                "Invalid amount. Please provide a valid positive number.",
                hint="Example: /topup base 0.01",
            )
        amount = _normalize_amount(amount)
        if amount is None:
            raise ValidationError(
                f"Amount out of range. Use at most {_fmt(MAX_TARGET_AMOUNT)} "
                f"with no more than {MAX_AMOUNT_DECIMALS} decimal places.",
                hint="Example: /topup base 0.01",
            )

        session = Session(
            step=SessionStep.AWAITING_DEPOSIT_ASSET,
            target_network=network.alias,
            target_amount=amount,
        )
        context = session.target_context
        options = [
            (asset.display, f"deposit:{asset.coin}:{asset.network}:{context}")
            for asset in COMMON_DEPOSIT_ASSETS
        ]
        if any(len(data.encode()) > CALLBACK_DATA_LIMIT for _, data in options):
            raise ValidationError(
                "Amount has too many digits. Please use a shorter number.",
                hint="Example: /topup base 0.01",
            )

        await self.store.set(command.user_id, session)
        logger.info(f"User {command.user_id} started top-up of {_fmt(amount)} on {network.alias}")

        buttons = [options[i:i + 2] for i in range(0, len(options), 2)]
        buttons.append([("❌ Cancel", "cancel_topup")])

        return [
            Reply(
                text=(
                    f"💰 Gas Top-up: {_fmt(amount)} {network.native_currency} on {network.network_name}\n\n"
                    "Choose what you'd like to deposit:"
                ),
                kind=ReplyKind.DEPOSIT_MENU,
                buttons=buttons,
                data={"target_network": network.alias, "target_amount": _fmt(amount)},
            )
        ]

    def _matches_session(self, session: Session, context: str) -> bool:
        chain, _, amount = context.partition("_")
        network = get_network_by_alias(chain)
        if network is None or network.alias != session.target_network:
            return False
        return _parse_decimal(amount) == session.target_amount

    async def _select_deposit_asset(self, command: SelectDepositAsset) -> List[Reply]:
        session = await self.store.get(command.user_id)
        if session is None:
            return [self._no_flow_reply()]
        if session.step != SessionStep.AWAITING_DEPOSIT_ASSET:
            network = self._session_network(session)
            return [
                Reply(
                    text=(
                        "ℹ️ You already picked a deposit asset.\n\n"
                        f"Please send your {network.network_name} address, or /cancel to start over."
                    ),
                    kind=ReplyKind.INFO,
                )
            ]
        if not self._matches_session(session, command.context):
            logger.info(
                f"Ignoring stale deposit selection {command.context!r} for user {command.user_id}"
            )
            return [
                Reply(
                    text=(
                        "⚠️ That menu belongs to an earlier top-up.\n\n"
                        "Please pick a deposit asset from the latest menu."
                    ),
                    kind=ReplyKind.INFO,
                )
            ]

        network = self._session_network(session)
        deposit_asset = f"{command.coin}-{command.network}"
        pair = await self.client.get_pair(deposit_asset, network.settle_coin)

        rate = _parse_decimal(pair.rate)
        if rate is not None and (rate <= 0 or _quantize(rate, SIX_PLACES) is None):
            rate = None
        target = session.target_amount
        estimated = _quantize(target / rate, SIX_PLACES) if rate else None
        if estimated is None:
            # a rate too extreme to quote with is treated like a missing one
            rate = None
        estimated_text = _fmt(estimated) if estimated is not None else "TBD"
        settle_text = _fmt(target.quantize(SIX_PLACES, rounding=ROUND_HALF_UP))

        minimum = self._minimum_for(command.coin, command.network, pair)
        if estimated is not None and minimum is not None and estimated < minimum:
            suggested = _quantize(minimum * rate, FOUR_PLACES) or minimum * rate
            coin = command.coin.upper()
            return [
                Reply(
                    text=(
                        "⚠️ Minimum Amount Required\n\n"
                        f"To receive {_fmt(target)} {network.native_currency}, you would need to deposit "
                        f"~{estimated_text} {coin}.\n\n"
                        f"However, the minimum for {coin} is {_fmt(minimum)}.\n\n"
                        f"💡 Suggestion: Try requesting more {network.native_currency} "
                        f"(at least {_fmt(suggested)}) or choose a different deposit asset."
                    ),
                    kind=ReplyKind.MINIMUM_WARNING,
                    data={
                        "estimated_deposit_amount": estimated_text,
                        "minimum": _fmt(minimum),
                        "suggested_amount": _fmt(suggested),
                    },
                )
            ]

        updated = replace(
            session,
            step=SessionStep.AWAITING_ADDRESS,
            deposit_asset=deposit_asset,
            settle_asset=network.settle_coin,
            quote=pair,
            calculated_deposit_amount=estimated_text,
            calculated_settle_amount=settle_text,
            external_id=new_external_id(command.user_id, deposit_asset),
        )
        await self.store.set(command.user_id, updated)

        coin = command.coin.upper()
        rate_text = f"1 {coin} = {_fmt(rate.quantize(SIX_PLACES))} {network.native_currency}" if rate else "Variable"
        return [
            Reply(
                text=(
                    "💰 Quote Received\n\n"
                    f"You send: ~{estimated_text} {coin}\n"
                    f"You receive: ~{settle_text} {network.native_currency}\n"
                    f"Rate: {rate_text}\n"
                    f"Network: {network.network_name}\n\n"
                    f"Please send your {network.network_name} address where you want to receive the gas tokens:"
                ),
                kind=ReplyKind.ADDRESS_PROMPT,
                buttons=[[("❌ Cancel", "cancel_topup")]],
                data={
                    "deposit_amount": estimated_text,
                    "settle_amount": settle_text,
                },
            )
        ]

    async def _submit_address(self, command: SubmitAddress) -> List[Reply]:
        session = await self.store.get(command.user_id)
        if session is None or session.step != SessionStep.AWAITING_ADDRESS:
            return [self._unrecognized_reply()]

        network = self._session_network(session)
        address = command.text.strip()
        result = validate_address(address, network.address_chain)
        if not result.is_valid:
            raise ValidationError(
                f"Invalid {network.network_name} address. {result.error or 'Please provide a valid address.'}",
                hint=f"Example: {example_address(network.address_chain)}",
            )

        quote = self._require_quote(session)

        try:
            permissions = await self.client.get_permissions()
        except SideShiftError as exc:
            raise ServiceUnavailableError(cause=exc) from exc
        if not permissions.create_shift:
            raise ForbiddenError()

        logger.info(
            f"Creating shift for user {command.user_id}: "
            f"{quote.deposit_coin}/{quote.deposit_network} -> {quote.settle_coin}/{quote.settle_network}"
        )
        shift = await self.client.create_variable_shift(
            CreateVariableShiftRequest(
                settle_address=address,
                deposit_coin=quote.deposit_coin,
                deposit_network=quote.deposit_network,
                settle_coin=quote.settle_coin,
                settle_network=quote.settle_network,
                affiliate_id=self.affiliate_id,
                external_id=session.external_id,
            )
        )
        await self.store.delete(command.user_id)
        logger.info(f"Shift {shift.id} created for user {command.user_id}")

        return [self._order_created_reply(shift, session, quote, network, address)]

    async def _check_status(self, command: CheckStatus) -> List[Reply]:
        try:
            shift = await self.client.get_shift(command.order_id)
        except SideShiftError as exc:
            if exc.code != ErrorCode.NOT_FOUND:
                raise
            return [
                Reply(
                    text=(
                        "📊 Order Status\n\n"
                        f"Shift ID: {command.order_id}\n"
                        "Status: ❓ Not found\n\n"
                        "This shift ID was not found. Please check the ID and try again."
                    ),
                    kind=ReplyKind.ORDER_NOT_FOUND,
                    data={"order_id": command.order_id},
                )
            ]
        return [self._status_reply(shift)]

    async def _cancel_order(self, command: CancelOrder) -> List[Reply]:
        order_id = command.order_id
        try:
            result = await self.client.cancel_order(order_id)
        except SideShiftError as exc:
            if exc.code == ErrorCode.TOO_EARLY:
                return [
                    Reply(
                        text=(
                            "⏰ Cannot Cancel Yet\n\n"
                            f"Shift ID: {order_id}\n\n"
                            "You can only cancel an order 5 minutes after it was created. "
                            "Please wait a few more minutes and try again.\n\n"
                            f"Tip: Use /status {order_id} to follow the order meanwhile."
                        ),
                        kind=ReplyKind.ERROR,
                        data={"order_id": order_id, "code": exc.code.value},
                    )
                ]
            if exc.code == ErrorCode.NOT_FOUND:
                return [
                    Reply(
                        text=(
                            "❌ Order Not Found\n\n"
                            f"Shift ID: {order_id}\n\n"
                            "This shift ID was not found or the order is already completed."
                        ),
                        kind=ReplyKind.ORDER_NOT_FOUND,
                        data={"order_id": order_id, "code": exc.code.value},
                    )
                ]
            raise

        logger.info(f"Order {order_id} cancelled by user {command.user_id}")
        return [
            Reply(
                text=(
                    f"✅ {result.message}\n\n"
                    f"Shift ID: {order_id}\n\n"
                    "If you made a deposit, it will be refunded to your refund address.\n\n"
                    f"Use /status {order_id} to check the refund status."
                ),
                kind=ReplyKind.ORDER_CANCELLED,
                data={"order_id": order_id},
            )
        ]

    async def _cancel_flow(self, command: CancelFlow) -> List[Reply]:
        await self.store.delete(command.user_id)
        return [
            Reply(
                text="❌ Top-up cancelled\n\nYou can start a new top-up anytime with the /topup command.",
                kind=ReplyKind.FLOW_CANCELLED,
            )
        ]

    def _show_help(self, command: ShowHelp) -> List[Reply]:
        if command.chain:
            network = get_network_by_alias(command.chain)
            if network is None:
                raise ValidationError(
                    f"Unsupported chain: {command.chain}",
                    hint=f"Supported chains: {', '.join(get_supported_chains())}",
                )
            alias = network.alias
            return [
                Reply(
                    text=(
                        f"⛽ Top up {network.network_name}\n\n"
                        f"How much {network.native_currency} do you want to top up?\n\n"
                        f"• /topup {alias} 0.01 - Small amount\n"
                        f"• /topup {alias} 0.05 - Medium amount\n"
                        f"• /topup {alias} 0.1 - Larger amount\n\n"
                        f"Or use: /topup {alias} <amount>"
                    ),
                    kind=ReplyKind.HELP,
                )
            ]

        return [
            Reply(
                text=(
                    "⛽ Gas Top-up Bot\n\n"
                    "Get native gas on any supported chain by depositing a coin you already hold.\n\n"
                    "Commands:\n"
                    "/topup <chain> <amount> - Start a gas top-up\n"
                    "/status <order id> - Check an order\n"
                    "/cancel_order <order id> - Cancel a waiting order\n"
                    "/cancel - Abandon the current top-up\n"
                    "/help - Show this message\n\n"
                    f"Supported chains: {', '.join(get_supported_chains())}"
                ),
                kind=ReplyKind.HELP,
                buttons=[
                    [("🔵 Base", "chain_base"), ("🔷 Ethereum", "chain_eth")],
                    [("🔶 Arbitrum", "chain_arb"), ("🟣 Optimism", "chain_op")],
                    [("🟣 Polygon", "chain_pol"), ("🔴 Avalanche", "chain_avax")],
                ],
            )
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _session_network(session: Session) -> NetworkInfo:
        network = get_network_by_alias(session.target_network)
        if network is None:
            raise SessionCorruptionError(
                "Your top-up session refers to an unknown network. Please start again with /topup."
            )
        return network

    @staticmethod
    def _require_quote(session: Session) -> Pair:
        quote = session.quote
        if quote is None:
            raise SessionCorruptionError("Quote not found in session. Please start again with /topup.")
        if not quote.deposit_coin or not quote.settle_coin:
            raise SessionCorruptionError("Invalid quote data: missing coin information. Please start again with /topup.")
        if not quote.deposit_network or not quote.settle_network:
            raise SessionCorruptionError("Invalid quote data: missing network information. Please start again with /topup.")
        return quote

    @staticmethod
    def _minimum_for(coin: str, network: str, pair: Pair) -> Optional[Decimal]:
        asset = find_deposit_asset(coin, network)
        if asset is not None:
            return asset.min_amount
        return _parse_decimal(pair.min)

    def _minutes_left(self, expires_at: datetime) -> int:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        seconds = (expires_at - self._clock()).total_seconds()
        return max(0, math.ceil(seconds / 60))

    def _order_created_reply(
        self,
        shift: Shift,
        session: Session,
        quote: Pair,
        network: NetworkInfo,
        address: str,
    ) -> Reply:
        minutes = self._minutes_left(shift.expires_at)
        return Reply(
            text=(
                "✅ Order Created Successfully!\n\n"
                f"Shift ID: {shift.id}\n"
                f"Deposit Address:\n{shift.deposit_address}\n\n"
                f"Send: {session.calculated_deposit_amount} {quote.deposit_coin.upper()}\n"
                f"Receive: ~{session.calculated_settle_amount} {quote.settle_coin.upper()} on {network.network_name}\n"
                f"To address: {address}\n\n"
                f"⏰ Order expires in: {minutes} minutes\n\n"
                f"Use /status {shift.id} to track your order."
            ),
            kind=ReplyKind.ORDER_CREATED,
            buttons=[[("📊 Check Status", f"status_{shift.id}")]],
            data={
                "order_id": shift.id,
                "deposit_address": shift.deposit_address,
                "deposit_amount": session.calculated_deposit_amount,
                "settle_amount": session.calculated_settle_amount,
                "expires_in_minutes": minutes,
            },
        )

    def _status_reply(self, shift: Shift) -> Reply:
        lines = [
            "📊 Order Status",
            "",
            f"Shift ID: {shift.id}",
            f"Status: {_STATUS_LABELS[shift.status]}",
            f"From: {shift.deposit_coin.upper()} ({shift.deposit_network})",
            f"To: {shift.settle_coin.upper()} ({shift.settle_network})",
            f"Deposit Address: {shift.deposit_address}",
        ]
        if shift.deposit_amount:
            lines.append(f"Deposited: {shift.deposit_amount} {shift.deposit_coin.upper()}")
        if shift.settle_amount:
            lines.append(f"Received: {shift.settle_amount} {shift.settle_coin.upper()}")
        minutes = self._minutes_left(shift.expires_at)
        if minutes and shift.status == ShiftStatus.WAITING:
            lines.append(f"Expires: {minutes} minutes")

        return Reply(
            text="\n".join(lines),
            kind=ReplyKind.ORDER_STATUS,
            buttons=[[("🔄 Refresh Status", f"status_{shift.id}")]],
            data={"order_id": shift.id, "status": shift.status.value},
        )

    def _error_reply(self, command: Command, error: Exception) -> Reply:
        title = _FAILURE_TITLES.get(type(command), "Something went wrong")
        text = f"❌ {title}\n\n{normalize(error)}"
        hint = getattr(error, "hint", None)
        if hint:
            text += f"\n\n{hint}"
        if isinstance(command, (SubmitAddress, SelectDepositAsset)) and not isinstance(error, TopupError):
            text += "\n\nPlease try again or contact support if the issue persists."

        code = getattr(error, "code", None)
        return Reply(
            text=text,
            kind=ReplyKind.ERROR,
            data={"code": code.value if isinstance(code, ErrorCode) else ErrorCode.UNKNOWN_ERROR.value},
        )

    @staticmethod
    def _no_flow_reply() -> Reply:
        return Reply(
            text="❌ No active top-up. Please start with /topup <chain> <amount>.",
            kind=ReplyKind.UNRECOGNIZED,
        )

    @staticmethod
    def _unrecognized_reply() -> Reply:
        return Reply(
            text="❓ Unknown command\n\nUse /help to see available commands.",
            kind=ReplyKind.UNRECOGNIZED,
        )


_orchestrator: Optional[TopupOrchestrator] = None


def get_topup_orchestrator() -> TopupOrchestrator:
    """Get singleton orchestrator wired to the in-memory store and SideShift client."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TopupOrchestrator(
            store=InMemorySessionStore(),
            client=get_sideshift_client(),
            affiliate_id=settings.sideshift_affiliate_id,
        )
    return _orchestrator
