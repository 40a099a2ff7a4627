"""Outbound replies produced by the orchestrator, independent of the chat transport."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

Button = Tuple[str, str]      # (label, callback data)


class ReplyKind(str, Enum):
    INFO = "info"
    DEPOSIT_MENU = "deposit_menu"
    MINIMUM_WARNING = "minimum_warning"
    ADDRESS_PROMPT = "address_prompt"
    ORDER_CREATED = "order_created"
    ORDER_STATUS = "order_status"
    ORDER_NOT_FOUND = "order_not_found"
    ORDER_CANCELLED = "order_cancelled"
    FLOW_CANCELLED = "flow_cancelled"
    HELP = "help"
    UNRECOGNIZED = "unrecognized"
    ERROR = "error"


@dataclass
class Reply:
    text: str
    kind: ReplyKind = ReplyKind.INFO
    buttons: List[List[Button]] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    def reply_markup(self) -> Dict[str, Any]:
        """Telegram inline keyboard for ``buttons`` (empty dict when there are none)."""
        if not self.buttons:
            return {}
        return {
            "inline_keyboard": [
                [{"text": label, "callback_data": data} for label, data in row]
                for row in self.buttons
            ]
        }
