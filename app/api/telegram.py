"""
Telegram Webhook Endpoint

Telegram posts every update to ``/webhook/telegram/{secret}``. The update is
authenticated, decoded into a top-up command, handled to completion and the
replies delivered before the webhook is acknowledged.

``POST /webhook/set-webhook`` registers that URL with Telegram.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import settings
from ..core.topup.commands import callback_query_id, decode_update
from ..core.topup.errors import (
    IngressError,
    InvalidEnvelopeError,
    MissingSecretError,
    ServerMisconfigurationError,
)
from ..core.topup.ingress import validate_envelope, verify_secret
from ..core.topup.orchestrator import TopupOrchestrator, get_topup_orchestrator
from ..middleware import redact_path
from ..providers.telegram import TelegramMessenger, get_telegram_messenger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhook")


def _rejection(exc: IngressError) -> JSONResponse:
    logger.warning(f"Rejected Telegram webhook: {exc.status_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _read_json(request: Request):
    try:
        return await request.json()
    except ValueError as exc:
        raise InvalidEnvelopeError() from exc


class SetWebhookRequest(BaseModel):
    drop_pending_updates: bool = False


@router.post("/set-webhook")
async def set_telegram_webhook(
    body: Optional[SetWebhookRequest] = None,
    x_webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
    messenger: TelegramMessenger = Depends(get_telegram_messenger),
):
    """
    Register ``{APP_BASE_URL}/webhook/telegram/{secret}`` with Telegram.

    The caller proves it knows the webhook secret via ``X-Webhook-Secret``.
    """
    if not settings.telegram_webhook_secret:
        return JSONResponse(status_code=400, content={"error": "TELEGRAM_WEBHOOK_SECRET not configured"})
    try:
        verify_secret(settings.telegram_webhook_secret, x_webhook_secret)
    except IngressError as exc:
        return _rejection(exc)
    if not messenger.enabled:
        return JSONResponse(status_code=400, content={"error": "TELEGRAM_BOT_TOKEN not configured"})
    webhook_url = settings.webhook_url
    if not webhook_url:
        return JSONResponse(status_code=400, content={"error": "APP_BASE_URL not configured"})

    shown_url = redact_path(webhook_url)
    drop_pending = body.drop_pending_updates if body else False
    try:
        ok = await messenger.set_webhook(
            webhook_url,
            secret_token=settings.telegram_webhook_secret,
            drop_pending_updates=drop_pending,
        )
    except httpx.HTTPStatusError as e:
        try:
            description = e.response.json().get("description")
        except ValueError:
            description = e.response.text
        logger.error(f"Telegram refused webhook {shown_url}: {description}")
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "Failed to set webhook", "telegram_error": description},
        )
    except httpx.HTTPError as e:
        logger.error(f"Error setting Telegram webhook {shown_url}: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    if not ok:
        return JSONResponse(status_code=400, content={"ok": False, "error": "Failed to set webhook"})
    logger.info(f"Telegram webhook set to {shown_url}")
    return {"ok": True, "message": "Webhook set successfully", "webhook_url": shown_url}


@router.post("/telegram")
async def telegram_webhook_without_secret():
    """Deliveries must carry the secret in the path."""
    if not settings.telegram_webhook_secret:
        return _rejection(ServerMisconfigurationError())
    return _rejection(MissingSecretError())


@router.post("/telegram/{secret}")
async def telegram_webhook(
    secret: str,
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
    orchestrator: TopupOrchestrator = Depends(get_topup_orchestrator),
    messenger: TelegramMessenger = Depends(get_telegram_messenger),
):
    """
    Receive a Telegram update.

    Responds 200 only after the update has been fully processed.
    """
    try:
        verify_secret(settings.telegram_webhook_secret, secret, x_telegram_bot_api_secret_token)
        update = validate_envelope(await _read_json(request))
    except IngressError as exc:
        return _rejection(exc)

    structlog.contextvars.bind_contextvars(update_id=update.update_id)

    command = decode_update(update)
    if command is None:
        logger.debug(f"Update {update.update_id} carries nothing to handle")
    else:
        try:
            replies = await orchestrator.handle(command)
            await messenger.deliver(command.chat_id, replies, callback_query_id(update))
        except Exception as e:
            logger.error(f"Error processing Telegram update {update.update_id}: {e}", exc_info=True)
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return {"ok": True, "processed_at": datetime.now(timezone.utc).isoformat()}
