"""
Telegram integration routes.
- Webhook handler for bot updates (commands, AI chat, /link)
- Liveness probe
- Linking code verification / unlink for the web app
"""
from datetime import datetime, timezone
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..config import settings
from ..dependencies import get_dispatcher, get_link_registry, get_sender
from ..schemas import (
    LinkedAccountOut,
    LinkVerifyResponse,
    LivenessResponse,
    TelegramUpdate,
    UnlinkResponse,
    WebhookAck,
)
from ..services import replies
from ..services.linking import LinkingRegistry, build_linked_account
from ..services.telegram_sender import TelegramSender
from ..use_cases.command_dispatch import CommandDispatcher

router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


@router.post("/webhook", response_model=WebhookAck)
async def telegram_webhook(
    request: Request,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """
    Telegram bot webhook handler.

    - Non-message updates (edited_message, callback_query, ...) are acknowledged and ignored
    - Business failures (AI down, send rejected) are absorbed; the user gets a reply or nothing
    - Only a payload we cannot decode yields 500

    Must respond 200 quickly (Telegram retries on non-2xx).
    """
    if settings.TELEGRAM_WEBHOOK_SECRET:
        received = request.headers.get(SECRET_HEADER, "")
        if not hmac.compare_digest(received, settings.TELEGRAM_WEBHOOK_SECRET):
            logger.warning("❌ Invalid webhook secret token")
            return JSONResponse(status_code=401, content={"error": "Invalid secret"})

    try:
        body = await request.json()
        update = TelegramUpdate.model_validate(body)
    except (ValueError, ValidationError) as e:
        logger.error(f"❌ Could not decode Telegram update: {type(e).__name__}")
        return JSONResponse(status_code=500, content={"error": "Invalid update payload"})

    if update.message is None:
        # Not a message update
        return {"ok": True}

    logger.info(f"📨 Telegram message received from chat {update.message.chat.id}")
    try:
        await run_in_threadpool(dispatcher.handle, update.message.to_inbound())
    except Exception:
        # Always 200 so Telegram does not retry-storm on our bugs
        logger.exception(f"❌ Failed to handle message from chat {update.message.chat.id}")

    return {"ok": True}


@router.get("/webhook", response_model=LivenessResponse)
def webhook_liveness():
    """Liveness probe for the webhook route."""
    return {
        "status": "Telegram webhook active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/link", response_model=LinkVerifyResponse)
def verify_link_code(
    code: str = Query(..., min_length=1, max_length=32),
    user_id: str = Query(..., min_length=1, max_length=64),
    registry: LinkingRegistry = Depends(get_link_registry),
    sender: TelegramSender = Depends(get_sender),
):
    """
    Verify a linking code typed into the web app and bind it to ``user_id``.

    Failures render as problem details with an ``error`` member:
    404 unknown code, 410 expired, 409 already used. Never retried by the server.
    """
    verification = registry.verify(code, user_id)
    account = build_linked_account(verification)

    # The code is already claimed here; a failed confirmation must not fail the request.
    try:
        sent = sender.send(verification.telegram_user_id, replies.link_confirmation_text(settings.PRODUCT_NAME))
    except Exception:
        logger.exception(f"❌ Link confirmation send crashed for {verification.telegram_user_id}")
    else:
        if not sent.ok:
            logger.warning(f"⚠️ Link confirmation not delivered to {verification.telegram_user_id}: {sent.error.value}")

    return LinkVerifyResponse(
        userId=account.app_user_id,
        telegramUserId=account.telegram_user_id,
        linkedAt=account.linked_at,
        account=LinkedAccountOut.model_validate(account),
    )


@router.delete("/unlink", response_model=UnlinkResponse)
def unlink_telegram(
    telegram_user_id: int = Query(...),
    registry: LinkingRegistry = Depends(get_link_registry),
):
    """Unlink a Telegram user: drops every code it holds."""
    if telegram_user_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid telegram_user_id")
    revoked = registry.revoke(telegram_user_id)
    logger.info(f"✅ Unlinked Telegram user {telegram_user_id}")
    return UnlinkResponse(message="Telegram unlinked", revoked=revoked)
