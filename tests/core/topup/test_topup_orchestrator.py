"""
Tests for the top-up conversation state machine.

The SideShift client is replaced by AsyncMocks; the session store is the
real in-memory implementation.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.topup.commands import (
    CancelFlow,
    CancelOrder,
    CheckStatus,
    Initiate,
    SelectDepositAsset,
    ShowHelp,
    SubmitAddress,
    Unrecognized,
)
from app.core.topup.errors import ErrorCode, SideShiftError
from app.core.topup.models import Session, SessionStep
from app.core.topup.orchestrator import TopupOrchestrator
from app.core.topup.replies import ReplyKind
from app.core.topup.store import InMemorySessionStore
from app.providers.sideshift.models import CancelResult, Pair, Permissions, Shift

USER = 101
CHAT = 202
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
VALID_ADDRESS = "0x742d35cc6634C0532925a3b8D431ED81C31Bb3E1"


def make_pair(rate="0.0005", minimum="5.1", coin="USDC", network="ethereum") -> Pair:
    return Pair.model_validate(
        {
            "min": minimum,
            "max": "20000",
            "rate": rate,
            "depositCoin": coin,
            "settleCoin": "ETH",
            "depositNetwork": network,
            "settleNetwork": "base",
        }
    )


def make_shift(**overrides) -> Shift:
    data = {
        "id": "shift-abc",
        "createdAt": NOW.isoformat(),
        "depositCoin": "USDC",
        "depositNetwork": "ethereum",
        "settleCoin": "ETH",
        "settleNetwork": "base",
        "depositAddress": "0xdeposit000000000000000000000000000000001",
        "settleAddress": VALID_ADDRESS,
        "depositMin": "5.1",
        "depositMax": "20000",
        "expiresAt": (NOW + timedelta(minutes=30)).isoformat(),
        "status": "waiting",
    }
    data.update(overrides)
    return Shift.model_validate(data)


@pytest.fixture
def client():
    client = MagicMock()
    client.get_pair = AsyncMock(return_value=make_pair())
    client.get_permissions = AsyncMock(return_value=Permissions(createShift=True))
    client.create_variable_shift = AsyncMock(return_value=make_shift())
    client.get_shift = AsyncMock(return_value=make_shift())
    client.cancel_order = AsyncMock(return_value=CancelResult())
    return client


@pytest.fixture
def store():
    return InMemorySessionStore(ttl_seconds=0)


@pytest.fixture
def orchestrator(store, client):
    return TopupOrchestrator(store=store, client=client, affiliate_id="aff-1", clock=lambda: NOW)


async def start(orchestrator, chain="base", amount="0.01"):
    return await orchestrator.handle(Initiate(USER, CHAT, chain, amount))


async def select(orchestrator, coin="usdc", network="ethereum", context="base_0.01"):
    return await orchestrator.handle(SelectDepositAsset(USER, CHAT, coin, network, context))


async def reach_address_step(orchestrator):
    await start(orchestrator)
    replies = await select(orchestrator)
    assert replies[0].kind == ReplyKind.ADDRESS_PROMPT


# =============================================================================
# Initiate
# =============================================================================

class TestInitiate:

    @pytest.mark.asyncio
    async def test_creates_session_and_menu(self, orchestrator, store):
        replies = await start(orchestrator)

        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_DEPOSIT_ASSET
        assert session.target_network == "base"
        assert session.target_amount == Decimal("0.01")

        assert len(replies) == 1
        menu = replies[0]
        assert menu.kind == ReplyKind.DEPOSIT_MENU
        callbacks = [data for row in menu.buttons for _, data in row]
        assert "deposit:usdc:ethereum:base_0.01" in callbacks
        assert "cancel_topup" in callbacks

    @pytest.mark.asyncio
    async def test_unknown_alias(self, orchestrator, store):
        replies = await start(orchestrator, chain="dogechain")

        assert replies[0].kind == ReplyKind.ERROR
        assert replies[0].data["code"] == ErrorCode.VALIDATION_ERROR.value
        assert "Unsupported chain: dogechain" in replies[0].text
        assert "base" in replies[0].text
        assert await store.get(USER) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["abc", "0", "-1", "NaN", "Infinity", ""])
    async def test_invalid_amount(self, orchestrator, store, amount):
        replies = await start(orchestrator, amount=amount)

        assert replies[0].kind == ReplyKind.ERROR
        assert replies[0].data["code"] == ErrorCode.VALIDATION_ERROR.value
        assert await store.get(USER) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "amount",
        [
            "100000000000000000000000",
            "1000000.000001",
            "0.0000000000000000001",
            "0.0100000000000000000000000000001",
        ],
    )
    async def test_out_of_range_amount(self, orchestrator, store, client, amount):
        replies = await start(orchestrator, amount=amount)

        assert replies[0].kind == ReplyKind.ERROR
        assert replies[0].data["code"] == ErrorCode.VALIDATION_ERROR.value
        assert "Amount out of range" in replies[0].text
        assert await store.get(USER) is None
        client.get_pair.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_amount_trailing_zeros_are_dropped(self, orchestrator, store):
        replies = await start(orchestrator, chain="polygon", amount="0.010000000000000000000000000000000")

        session = await store.get(USER)
        assert session.target_amount == Decimal("0.01")
        assert session.target_context == "polygon_0.01"
        assert replies[0].data["target_amount"] == "0.01"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "chain,amount",
        [("polygon", "0.000000000000000001"), ("base", "999999.999999999999999999"), ("arb", "1000000")],
    )
    async def test_button_data_fits_telegram_limit(self, orchestrator, chain, amount):
        replies = await start(orchestrator, chain=chain, amount=amount)

        menu = replies[0]
        assert menu.kind == ReplyKind.DEPOSIT_MENU
        for row in menu.buttons:
            for _, data in row:
                assert len(data.encode()) <= 64

    @pytest.mark.asyncio
    async def test_overwrites_existing_session(self, orchestrator, store):
        await reach_address_step(orchestrator)

        await start(orchestrator, chain="arb", amount="0.5")

        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_DEPOSIT_ASSET
        assert session.target_network == "arb"
        assert session.quote is None


# =============================================================================
# Deposit Asset Selection
# =============================================================================

class TestSelectDepositAsset:

    @pytest.mark.asyncio
    async def test_below_minimum_stays_put(self, orchestrator, store, client):
        client.get_pair.return_value = make_pair(rate="2000")
        await start(orchestrator)

        replies = await select(orchestrator)

        warning = replies[0]
        assert warning.kind == ReplyKind.MINIMUM_WARNING
        assert warning.data["estimated_deposit_amount"] == "0.000005"
        assert warning.data["minimum"] == "5.1"
        assert warning.data["suggested_amount"] == "10200.0000"
        assert "5.1" in warning.text

        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_DEPOSIT_ASSET
        assert session.quote is None
        assert session.calculated_deposit_amount is None

    @pytest.mark.asyncio
    async def test_quote_stored_and_address_requested(self, orchestrator, store, client):
        await start(orchestrator)

        replies = await select(orchestrator)

        client.get_pair.assert_awaited_once_with("usdc-ethereum", "eth-base")
        assert replies[0].kind == ReplyKind.ADDRESS_PROMPT
        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_ADDRESS
        assert session.deposit_asset == "usdc-ethereum"
        assert session.settle_asset == "eth-base"
        assert session.quote == make_pair()
        assert session.calculated_deposit_amount == "20.000000"
        assert session.calculated_settle_amount == "0.010000"
        assert len(session.external_id) == 32

    @pytest.mark.asyncio
    async def test_missing_rate_is_tbd(self, orchestrator, store, client):
        client.get_pair.return_value = make_pair(rate=None)
        await start(orchestrator)

        replies = await select(orchestrator)

        assert replies[0].kind == ReplyKind.ADDRESS_PROMPT
        assert replies[0].data["deposit_amount"] == "TBD"
        session = await store.get(USER)
        assert session.calculated_deposit_amount == "TBD"

    @pytest.mark.asyncio
    async def test_provider_minimum_used_for_unlisted_assets(self, orchestrator, store, client):
        client.get_pair.return_value = make_pair(rate="0.0005", minimum="50", coin="DAI")
        await start(orchestrator)

        replies = await select(orchestrator, coin="dai")

        assert replies[0].kind == ReplyKind.MINIMUM_WARNING
        assert replies[0].data["minimum"] == "50"
        assert (await store.get(USER)).step == SessionStep.AWAITING_DEPOSIT_ASSET

    @pytest.mark.asyncio
    async def test_stale_context_rejected(self, orchestrator, store, client):
        await start(orchestrator)

        replies = await select(orchestrator, context="arb_0.5")

        assert replies[0].kind == ReplyKind.INFO
        client.get_pair.assert_not_awaited()
        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_DEPOSIT_ASSET
        assert session.target_network == "base"

    @pytest.mark.asyncio
    async def test_equivalent_amount_context_accepted(self, orchestrator, store):
        await start(orchestrator, amount="0.010")

        replies = await select(orchestrator, context="base_0.01")

        assert replies[0].kind == ReplyKind.ADDRESS_PROMPT

    @pytest.mark.asyncio
    async def test_extreme_rate_is_tbd(self, orchestrator, store, client):
        client.get_pair.return_value = make_pair(rate="0.000000000000000000000000001")
        await start(orchestrator, amount="1000000")

        replies = await select(orchestrator, context="base_1000000")

        assert replies[0].kind == ReplyKind.ADDRESS_PROMPT
        assert replies[0].data["deposit_amount"] == "TBD"
        assert replies[0].data["settle_amount"] == "1000000.000000"

    @pytest.mark.asyncio
    async def test_without_session(self, orchestrator, client):
        replies = await select(orchestrator)

        assert replies[0].kind == ReplyKind.UNRECOGNIZED
        client.get_pair.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_selection_while_awaiting_address(self, orchestrator, store, client):
        await reach_address_step(orchestrator)

        replies = await select(orchestrator, coin="usdt")

        assert replies[0].kind == ReplyKind.INFO
        assert "No active top-up" not in replies[0].text
        assert "address" in replies[0].text
        client.get_pair.assert_awaited_once()
        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_ADDRESS
        assert session.deposit_asset == "usdc-ethereum"

    @pytest.mark.asyncio
    async def test_provider_error_keeps_session(self, orchestrator, store, client):
        client.get_pair.side_effect = SideShiftError(
            400, "Bad request", ErrorCode.INVALID_REQUEST, {"error": {"message": "Pair not supported"}}
        )
        await start(orchestrator)

        replies = await select(orchestrator)

        assert replies[0].kind == ReplyKind.ERROR
        assert "Pair not supported" in replies[0].text
        assert (await store.get(USER)).step == SessionStep.AWAITING_DEPOSIT_ASSET

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_reply(self, orchestrator, store, client):
        client.get_pair.side_effect = RuntimeError("socket closed")
        await start(orchestrator)

        replies = await select(orchestrator)

        assert replies[0].kind == ReplyKind.ERROR
        assert "socket closed" in replies[0].text
        assert replies[0].data["code"] == ErrorCode.UNKNOWN_ERROR.value
        assert await store.get(USER) is not None


# =============================================================================
# Address Submission
# =============================================================================

class TestSubmitAddress:

    @pytest.mark.asyncio
    async def test_invalid_address_stays_put(self, orchestrator, store, client):
        await reach_address_step(orchestrator)

        replies = await orchestrator.handle(SubmitAddress(USER, CHAT, "not-a-valid-address"))

        assert replies[0].kind == ReplyKind.ERROR
        assert replies[0].data["code"] == ErrorCode.VALIDATION_ERROR.value
        assert "0x742d35cc6634C0532925a3b8D431ED81C31Bb3E1" in replies[0].text
        assert (await store.get(USER)).step == SessionStep.AWAITING_ADDRESS
        client.create_variable_shift.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_created(self, orchestrator, store, client):
        await reach_address_step(orchestrator)
        session = await store.get(USER)

        replies = await orchestrator.handle(SubmitAddress(USER, CHAT, f"  {VALID_ADDRESS} "))

        assert await store.get(USER) is None
        confirmation = replies[0]
        assert confirmation.kind == ReplyKind.ORDER_CREATED
        assert confirmation.data["order_id"] == "shift-abc"
        assert confirmation.data["deposit_address"]
        assert confirmation.data["expires_in_minutes"] == 30
        assert confirmation.data["deposit_amount"] == "20.000000"
        assert confirmation.data["settle_amount"] == "0.010000"
        assert confirmation.buttons == [[("📊 Check Status", "status_shift-abc")]]

        request = client.create_variable_shift.await_args.args[0]
        assert request.settle_address == VALID_ADDRESS
        assert request.deposit_coin == session.quote.deposit_coin
        assert request.deposit_network == session.quote.deposit_network
        assert request.settle_coin == session.quote.settle_coin
        assert request.settle_network == session.quote.settle_network
        assert request.affiliate_id == "aff-1"
        assert request.external_id == session.external_id

    @pytest.mark.asyncio
    async def test_permissions_check_failure_keeps_session(self, orchestrator, store, client):
        client.get_permissions.side_effect = SideShiftError(None, "Network error", ErrorCode.NETWORK_ERROR)
        await reach_address_step(orchestrator)

        replies = await orchestrator.handle(SubmitAddress(USER, CHAT, VALID_ADDRESS))

        assert replies[0].data["code"] == ErrorCode.SERVICE_UNAVAILABLE.value
        assert "unavailable" in replies[0].text
        assert (await store.get(USER)).step == SessionStep.AWAITING_ADDRESS
        client.create_variable_shift.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forbidden_jurisdiction_keeps_session(self, orchestrator, store, client):
        client.get_permissions.return_value = Permissions(createShift=False)
        await reach_address_step(orchestrator)

        replies = await orchestrator.handle(SubmitAddress(USER, CHAT, VALID_ADDRESS))

        assert replies[0].data["code"] == ErrorCode.FORBIDDEN.value
        assert await store.get(USER) is not None
        client.create_variable_shift.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creation_failure_retries_with_same_external_id(self, orchestrator, store, client):
        client.create_variable_shift.side_effect = [
            SideShiftError(500, "Internal", ErrorCode.INTERNAL_ERROR, {"message": "Try again shortly"}),
            make_shift(),
        ]
        await reach_address_step(orchestrator)

        first = await orchestrator.handle(SubmitAddress(USER, CHAT, VALID_ADDRESS))

        assert first[0].kind == ReplyKind.ERROR
        assert "Try again shortly" in first[0].text
        session = await store.get(USER)
        assert session.step == SessionStep.AWAITING_ADDRESS

        second = await orchestrator.handle(SubmitAddress(USER, CHAT, VALID_ADDRESS))

        assert second[0].kind == ReplyKind.ORDER_CREATED
        ids = [call.args[0].external_id for call in client.create_variable_shift.await_args_list]
        assert ids == [session.external_id, session.external_id]

    @pytest.mark.asyncio
    async def test_missing_quote_clears_session(self, orchestrator, store, client):
        await store.set(
            USER,
            Session(
                step=SessionStep.AWAITING_ADDRESS,
                target_network="base",
                target_amount=Decimal("0.01"),
            ),
        )

        replies = await orchestrator.handle(SubmitAddress(USER, CHAT, VALID_ADDRESS))

        assert replies[0].data["code"] == ErrorCode.SESSION_CORRUPTION.value
        assert "/topup" in replies[0].text
        assert await store.get(USER) is None
        client.get_permissions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_free_text_without_address_step(self, orchestrator, store, client):
        idle = await orchestrator.handle(SubmitAddress(USER, CHAT, "hello"))
        assert idle[0].kind == ReplyKind.UNRECOGNIZED
        assert await store.get(USER) is None

        await start(orchestrator)
        choosing = await orchestrator.handle(SubmitAddress(USER, CHAT, VALID_ADDRESS))
        assert choosing[0].kind == ReplyKind.UNRECOGNIZED
        assert (await store.get(USER)).step == SessionStep.AWAITING_DEPOSIT_ASSET
        client.create_variable_shift.assert_not_awaited()


# =============================================================================
# Cancel Flow / Help / Unrecognized
# =============================================================================

class TestCancelFlow:

    @pytest.mark.asyncio
    async def test_cancel_from_any_step(self, orchestrator, store):
        await start(orchestrator)
        replies = await orchestrator.handle(CancelFlow(USER, CHAT))
        assert replies[0].kind == ReplyKind.FLOW_CANCELLED
        assert await store.get(USER) is None

        await reach_address_step(orchestrator)
        await orchestrator.handle(CancelFlow(USER, CHAT))
        assert await store.get(USER) is None

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, orchestrator, store):
        replies = await orchestrator.handle(CancelFlow(USER, CHAT))
        assert replies[0].kind == ReplyKind.FLOW_CANCELLED


class TestHelp:

    @pytest.mark.asyncio
    async def test_help_lists_chains(self, orchestrator):
        replies = await orchestrator.handle(ShowHelp(USER, CHAT))
        assert replies[0].kind == ReplyKind.HELP
        assert "/topup" in replies[0].text
        assert "avax" in replies[0].text

    @pytest.mark.asyncio
    async def test_chain_prompt(self, orchestrator):
        replies = await orchestrator.handle(ShowHelp(USER, CHAT, chain="base"))
        assert "/topup base 0.01" in replies[0].text

    @pytest.mark.asyncio
    async def test_unknown_chain_prompt(self, orchestrator):
        replies = await orchestrator.handle(ShowHelp(USER, CHAT, chain="nope"))
        assert replies[0].kind == ReplyKind.ERROR

    @pytest.mark.asyncio
    async def test_unrecognized_leaves_state(self, orchestrator, store):
        await start(orchestrator)
        replies = await orchestrator.handle(Unrecognized(USER, CHAT, "/balance"))
        assert replies[0].kind == ReplyKind.UNRECOGNIZED
        assert (await store.get(USER)).step == SessionStep.AWAITING_DEPOSIT_ASSET


# =============================================================================
# Stateless Order Commands
# =============================================================================

class TestOrderCommands:

    @pytest.mark.asyncio
    async def test_status(self, orchestrator, client):
        replies = await orchestrator.handle(CheckStatus(USER, CHAT, "shift-abc"))

        client.get_shift.assert_awaited_once_with("shift-abc")
        assert replies[0].kind == ReplyKind.ORDER_STATUS
        assert replies[0].data["status"] == "waiting"
        assert "Waiting for deposit" in replies[0].text

    @pytest.mark.asyncio
    async def test_status_not_found(self, orchestrator, client, store):
        await start(orchestrator)
        client.get_shift.side_effect = SideShiftError(404, "Not found", ErrorCode.NOT_FOUND)

        replies = await orchestrator.handle(CheckStatus(USER, CHAT, "missing"))

        assert replies[0].kind == ReplyKind.ORDER_NOT_FOUND
        assert "not found" in replies[0].text
        assert (await store.get(USER)).step == SessionStep.AWAITING_DEPOSIT_ASSET

    @pytest.mark.asyncio
    async def test_status_other_error(self, orchestrator, client):
        client.get_shift.side_effect = SideShiftError(503, "Down", ErrorCode.SERVICE_UNAVAILABLE, {"message": "Maintenance"})

        replies = await orchestrator.handle(CheckStatus(USER, CHAT, "shift-abc"))

        assert replies[0].kind == ReplyKind.ERROR
        assert "Maintenance" in replies[0].text

    @pytest.mark.asyncio
    async def test_cancel_order(self, orchestrator, client):
        replies = await orchestrator.handle(CancelOrder(USER, CHAT, "shift-abc"))

        client.cancel_order.assert_awaited_once_with("shift-abc")
        assert replies[0].kind == ReplyKind.ORDER_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_order_too_early(self, orchestrator, client):
        client.cancel_order.side_effect = SideShiftError(400, "Too early", ErrorCode.TOO_EARLY)

        replies = await orchestrator.handle(CancelOrder(USER, CHAT, "shift-abc"))

        assert replies[0].data["code"] == ErrorCode.TOO_EARLY.value
        assert "5 minutes" in replies[0].text

    @pytest.mark.asyncio
    async def test_cancel_order_not_found(self, orchestrator, client):
        client.cancel_order.side_effect = SideShiftError(404, "Gone", ErrorCode.NOT_FOUND)

        replies = await orchestrator.handle(CancelOrder(USER, CHAT, "shift-abc"))

        assert replies[0].kind == ReplyKind.ORDER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_cancel_order_other_error_normalized(self, orchestrator, client):
        client.cancel_order.side_effect = SideShiftError(500, "Error", ErrorCode.INTERNAL_ERROR, {})

        replies = await orchestrator.handle(CancelOrder(USER, CHAT, "shift-abc"))

        assert replies[0].kind == ReplyKind.ERROR
        assert "An unknown error occurred" in replies[0].text


# =============================================================================
# Per-user Serialization
# =============================================================================

class TestSerialization:

    @pytest.mark.asyncio
    async def test_commands_for_same_user_do_not_interleave(self, orchestrator, store, client):
        release = asyncio.Event()

        async def slow_pair(*args, **kwargs):
            await release.wait()
            return make_pair()

        client.get_pair.side_effect = slow_pair
        await start(orchestrator)

        selecting = asyncio.create_task(select(orchestrator))
        await asyncio.sleep(0)
        cancelling = asyncio.create_task(orchestrator.handle(CancelFlow(USER, CHAT)))
        await asyncio.sleep(0)
        assert not cancelling.done()

        release.set()
        await asyncio.gather(selecting, cancelling)

        assert await store.get(USER) is None

    @pytest.mark.asyncio
    async def test_other_users_are_not_blocked(self, orchestrator, client):
        release = asyncio.Event()

        async def slow_pair(*args, **kwargs):
            await release.wait()
            return make_pair()

        client.get_pair.side_effect = slow_pair
        await start(orchestrator)
        selecting = asyncio.create_task(select(orchestrator))
        await asyncio.sleep(0)

        replies = await asyncio.wait_for(orchestrator.handle(ShowHelp(999, 999)), timeout=1)
        assert replies[0].kind == ReplyKind.HELP

        release.set()
        await selecting
