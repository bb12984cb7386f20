import hmac
import json
import logging

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from social_connect.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/instagram", response_class=PlainTextResponse)
def verify_instagram_webhook(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> str:
    expected = settings.instagram_webhook_verify_token or ""
    token_ok = bool(expected and hub_verify_token) and hmac.compare_digest(hub_verify_token, expected)
    if hub_mode != "subscribe" or not token_ok:
        logger.warning("instagram_webhook_verification_rejected mode=%s", hub_mode)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook verification failed")
    if not hub_challenge:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing hub.challenge parameter")
    logger.info("instagram_webhook_verified")
    return hub_challenge


@router.post("/instagram", response_class=PlainTextResponse)
async def receive_instagram_event(request: Request) -> str:
    body = await request.body()
    try:
        payload = json.loads(body.decode("utf-8")) if body else {}
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload") from exc
    entries = payload.get("entry") if isinstance(payload, dict) else None
    logger.info(
        "instagram_webhook_event object=%s entries=%s",
        payload.get("object") if isinstance(payload, dict) else None,
        len(entries) if isinstance(entries, list) else 0,
    )
    return "EVENT_RECEIVED"
