"""
Top-up Commands

Closed set of commands the orchestrator understands, and the decoder that
turns a Telegram update into exactly one of them.

Text commands::

    /topup <chain> <amount>   start a top-up
    /status <order id>        check an order
    /cancel_order <order id>  cancel a waiting order
    /cancel                   abandon the current top-up
    /start, /help             usage

Callback data::

    deposit:{coin}:{network}:{chain}_{amount}
    deposit_{coin}_{network}_{chain}_{amount}   (older keyboards)
    cancel, cancel_topup, status_{id}, chain_{alias}
"""

from dataclasses import dataclass
from typing import Optional, Union

from .ingress import TelegramUpdate


@dataclass(frozen=True)
class Initiate:
    user_id: int
    chat_id: int
    chain: str
    amount: str


@dataclass(frozen=True)
class SelectDepositAsset:
    user_id: int
    chat_id: int
    coin: str
    network: str
    context: str        # "{chain}_{amount}" of the flow that rendered the button


@dataclass(frozen=True)
class SubmitAddress:
    user_id: int
    chat_id: int
    text: str


@dataclass(frozen=True)
class CheckStatus:
    user_id: int
    chat_id: int
    order_id: str


@dataclass(frozen=True)
class CancelOrder:
    user_id: int
    chat_id: int
    order_id: str


@dataclass(frozen=True)
class CancelFlow:
    user_id: int
    chat_id: int


@dataclass(frozen=True)
class ShowHelp:
    user_id: int
    chat_id: int
    chain: Optional[str] = None


@dataclass(frozen=True)
class Unrecognized:
    user_id: int
    chat_id: int
    text: str = ""


Command = Union[
    Initiate,
    SelectDepositAsset,
    SubmitAddress,
    CheckStatus,
    CancelOrder,
    CancelFlow,
    ShowHelp,
    Unrecognized,
]


def _parse_text(user_id: int, chat_id: int, text: str) -> Command:
    text = text.strip()
    if not text.startswith("/"):
        return SubmitAddress(user_id, chat_id, text)

    parts = text.split()
    # "/topup@GasBot base 0.01" in group chats
    name = parts[0].split("@", 1)[0].lower()
    args = parts[1:]

    if name == "/topup" and len(args) == 2:
        return Initiate(user_id, chat_id, args[0].lower(), args[1])
    if name == "/status" and len(args) == 1:
        return CheckStatus(user_id, chat_id, args[0])
    if name == "/cancel_order" and len(args) == 1:
        return CancelOrder(user_id, chat_id, args[0])
    if name == "/cancel" and not args:
        return CancelFlow(user_id, chat_id)
    if name in ("/start", "/help"):
        return ShowHelp(user_id, chat_id)
    return Unrecognized(user_id, chat_id, text)


def _parse_deposit(user_id: int, chat_id: int, data: str) -> Command:
    if data.startswith("deposit:"):
        parts = data.split(":")
        if len(parts) != 4:
            return Unrecognized(user_id, chat_id, data)
        _, coin, network, context = parts
    else:
        parts = data.split("_")
        if len(parts) != 5:
            return Unrecognized(user_id, chat_id, data)
        _, coin, network, chain, amount = parts
        context = f"{chain}_{amount}"

    chain, sep, amount = context.partition("_")
    if not (coin and network and chain and sep and amount):
        return Unrecognized(user_id, chat_id, data)
    return SelectDepositAsset(user_id, chat_id, coin.lower(), network.lower(), context)


def _parse_callback(user_id: int, chat_id: int, data: str) -> Command:
    if data.startswith("deposit:") or data.startswith("deposit_"):
        return _parse_deposit(user_id, chat_id, data)
    if data in ("cancel", "cancel_topup"):
        return CancelFlow(user_id, chat_id)
    if data.startswith("status_") and len(data) > len("status_"):
        return CheckStatus(user_id, chat_id, data[len("status_"):])
    if data.startswith("chain_") and len(data) > len("chain_"):
        return ShowHelp(user_id, chat_id, chain=data[len("chain_"):].lower())
    return Unrecognized(user_id, chat_id, data)


def decode_update(update: TelegramUpdate) -> Optional[Command]:
    """Decode ``update`` into a command.

    Returns None for updates with neither a text message nor callback data,
    or with no identifiable sender.
    """

    query = update.callback_query
    if query is not None and query.data is not None:
        if query.from_user is None:
            return None
        chat = query.message.chat if query.message and query.message.chat else None
        chat_id = chat.id if chat else query.from_user.id
        return _parse_callback(query.from_user.id, chat_id, query.data)

    message = update.message
    if message is not None and message.text is not None:
        if message.from_user is None:
            return None
        chat_id = message.chat.id if message.chat else message.from_user.id
        return _parse_text(message.from_user.id, chat_id, message.text)

    return None


def callback_query_id(update: TelegramUpdate) -> Optional[str]:
    """Id to acknowledge with ``answerCallbackQuery``, if the update is a button press."""
    if update.callback_query is None:
        return None
    return update.callback_query.id
