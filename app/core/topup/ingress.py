"""
Webhook Ingress

Authenticates Telegram webhook deliveries and validates the update
envelope before anything reaches the orchestrator.
"""

import hmac
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic import ValidationError as SchemaValidationError

from .errors import (
    InvalidEnvelopeError,
    MissingSecretError,
    ServerMisconfigurationError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Telegram update schema (only the parts the bot reads)
# =============================================================================


class _TelegramModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TelegramUser(_TelegramModel):
    id: StrictInt
    username: Optional[str] = None


class TelegramChat(_TelegramModel):
    id: StrictInt


class TelegramMessage(_TelegramModel):
    message_id: Optional[int] = None
    from_user: Optional[TelegramUser] = Field(None, alias="from")
    chat: Optional[TelegramChat] = None
    text: Optional[str] = None


class TelegramCallbackQuery(_TelegramModel):
    id: str
    from_user: Optional[TelegramUser] = Field(None, alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None


class TelegramUpdate(_TelegramModel):
    update_id: StrictInt
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


# =============================================================================
# Checks
# =============================================================================


def verify_secret(
    expected: Optional[str],
    provided_path: Optional[str],
    provided_header: Optional[str] = None,
) -> None:
    """Raise an ``IngressError`` unless the delivery carries the webhook secret.

    The path secret is mandatory. Telegram's secret-token header is checked
    too when it is present.
    """

    if not expected:
        raise ServerMisconfigurationError()
    if not provided_path:
        raise MissingSecretError()
    if not hmac.compare_digest(provided_path.encode(), expected.encode()):
        raise UnauthorizedError()
    if provided_header is not None and not hmac.compare_digest(
        provided_header.encode(), expected.encode()
    ):
        raise UnauthorizedError()


def validate_envelope(body: Any) -> TelegramUpdate:
    """Check the decoded JSON body is an update object with an integer ``update_id``.

    Only the envelope is enforced. An update whose nested payload does not
    match the schema comes back bare, so it is acknowledged with nothing to
    handle.
    """

    if not isinstance(body, dict):
        raise InvalidEnvelopeError()
    update_id = body.get("update_id")
    if not isinstance(update_id, int) or isinstance(update_id, bool):
        raise InvalidEnvelopeError()
    try:
        return TelegramUpdate.model_validate(body)
    except SchemaValidationError as exc:
        logger.warning(f"Update {update_id} has an unexpected payload shape: {exc.error_count()} errors")
        return TelegramUpdate(update_id=update_id)
