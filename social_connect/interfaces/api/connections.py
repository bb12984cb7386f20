import logging
from urllib.parse import quote_plus
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from social_connect.application.services.platform_connection_service import (
    disconnect_connection,
    list_connections,
)
from social_connect.application.services.service_registry import ServiceRegistry
from social_connect.application.services.session_scope import SessionScope
from social_connect.core.config import settings
from social_connect.infrastructure.db.session import get_db
from social_connect.integrations.callback_channel import AuthCallbackMessage
from social_connect.interfaces.api.deps import get_current_user_id, get_services, get_session_scope, require_platform

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


class CallbackData(BaseModel):
    oauth_token: str | None = None
    oauth_verifier: str | None = None
    code: str | None = None
    state: str | None = None


class AuthMessageRequest(BaseModel):
    flow_id: str
    type: str
    code: str | None = None
    data: CallbackData | None = None


class CancelFlowRequest(BaseModel):
    reason: str = "popup_closed"


def build_dashboard_redirect(*, platform: str, success: bool, reason: str | None = None) -> str:
    base_url = settings.public_app_url.rstrip("/")
    if success:
        return f"{base_url}/dashboard?connected={quote_plus(platform)}"
    reason_param = quote_plus((reason or "Authorization failed")[:220])
    return f"{base_url}/dashboard?connected={quote_plus(platform + '_error')}&reason={reason_param}"


def _owned_flow_snapshot(services: ServiceRegistry, flow_id: str, user_id: UUID) -> dict:
    snapshot = services.flows.snapshot(flow_id)
    if snapshot is None or snapshot.get("user_id") != str(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Authorization flow not found")
    return snapshot


@router.get("", status_code=status.HTTP_200_OK)
def list_user_connections(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> list[dict]:
    return [
        {
            "platform": connection.platform,
            "connected": connection.connected,
            "username": connection.username,
            "profile_image": connection.profile_image,
            "last_verified": connection.last_verified.isoformat() if connection.last_verified else None,
        }
        for connection in list_connections(db, user_id=user_id)
    ]


@router.get("/twitter/callback")
async def twitter_callback(
    oauth_token: str | None = Query(default=None),
    oauth_verifier: str | None = Query(default=None),
    denied: str | None = Query(default=None),
    services: ServiceRegistry = Depends(get_services),
):
    if denied:
        flow = services.flows.find_by_callback_key(denied)
        if flow is not None:
            flow.cancel("denied")
        return RedirectResponse(
            url=build_dashboard_redirect(platform="twitter", success=False, reason="Authorization was denied"),
            status_code=status.HTTP_302_FOUND,
        )
    if not oauth_token or not oauth_verifier:
        return RedirectResponse(
            url=build_dashboard_redirect(platform="twitter", success=False, reason="Missing OAuth params"),
            status_code=status.HTTP_302_FOUND,
        )

    accepted = services.flows.deliver(
        AuthCallbackMessage(
            type="TWITTER_AUTH_SUCCESS",
            origin=settings.app_origin,
            oauth_token=oauth_token,
            oauth_verifier=oauth_verifier,
        )
    )
    return RedirectResponse(
        url=build_dashboard_redirect(
            platform="twitter",
            success=accepted,
            reason=None if accepted else "No pending authorization for this request",
        ),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/instagram/callback")
async def instagram_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
    services: ServiceRegistry = Depends(get_services),
):
    if error:
        flow = services.flows.find_by_callback_key(state)
        if flow is not None:
            flow.cancel(error)
        return RedirectResponse(
            url=build_dashboard_redirect(platform="instagram", success=False, reason=error_description or error),
            status_code=status.HTTP_302_FOUND,
        )
    if not code or not state:
        return RedirectResponse(
            url=build_dashboard_redirect(platform="instagram", success=False, reason="Missing OAuth params"),
            status_code=status.HTTP_302_FOUND,
        )

    accepted = services.flows.deliver(
        AuthCallbackMessage(type="INSTAGRAM_AUTH_SUCCESS", origin=settings.app_origin, code=code, state=state)
    )
    return RedirectResponse(
        url=build_dashboard_redirect(
            platform="instagram",
            success=accepted,
            reason=None if accepted else "No pending authorization for this request",
        ),
        status_code=status.HTTP_302_FOUND,
    )


@router.post("/auth-messages", status_code=status.HTTP_202_ACCEPTED)
async def relay_auth_message(
    payload: AuthMessageRequest,
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    _owned_flow_snapshot(services, payload.flow_id, user_id)
    data = payload.data or CallbackData()
    message = AuthCallbackMessage(
        type=payload.type,
        origin=request.headers.get("origin"),
        code=payload.code or data.code,
        state=data.state,
        oauth_token=data.oauth_token,
        oauth_verifier=data.oauth_verifier,
    )
    accepted = services.flows.deliver(message, flow_id=payload.flow_id)
    return {"flow_id": payload.flow_id, "accepted": accepted}


@router.get("/flows/{flow_id}", status_code=status.HTTP_200_OK)
def get_flow(
    flow_id: str,
    user_id: UUID = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    return _owned_flow_snapshot(services, flow_id, user_id)


@router.post("/flows/{flow_id}/cancel", status_code=status.HTTP_200_OK)
async def cancel_flow(
    flow_id: str,
    payload: CancelFlowRequest | None = None,
    user_id: UUID = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    _owned_flow_snapshot(services, flow_id, user_id)
    reason = payload.reason if payload is not None else "popup_closed"
    cancelled = services.flows.cancel(flow_id, reason)
    return {**services.flows.snapshot(flow_id), "cancelled": cancelled}


@router.post("/{platform}/authorize", status_code=status.HTTP_201_CREATED)
async def authorize(
    platform: str = Depends(require_platform),
    user_id: UUID = Depends(get_current_user_id),
    scope: SessionScope = Depends(get_session_scope),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    flow = services.new_flow(user_id=user_id, platform=platform, scope=scope)
    authorize_url = await services.flows.launch(flow, scope.tasks)
    logger.info("auth_flow_started flow_id=%s platform=%s user_id=%s", flow.flow_id, platform, user_id)
    return {
        "flow_id": flow.flow_id,
        "platform": platform,
        "authorize_url": authorize_url,
        "state": flow.state.value,
        "expires_in": services.config.oauth_callback_timeout_seconds,
    }


@router.get("/{platform}/status", status_code=status.HTTP_200_OK)
async def connection_status(
    platform: str = Depends(require_platform),
    user_id: UUID = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    result = await services.verifier.verify_detailed(user_id, platform)
    return {
        "platform": result.platform,
        "connected": result.connected,
        "message": result.message,
        "username": result.username,
        "profile_image": result.profile_image,
        "last_verified": result.last_verified.isoformat() if result.last_verified else None,
        "needs_reauth": result.needs_reauth,
        "verified_live": result.verified_live,
        "auth_pending": services.cache.is_pending(user_id, platform),
    }


@router.delete("/{platform}", status_code=status.HTTP_200_OK)
async def disconnect(
    platform: str = Depends(require_platform),
    user_id: UUID = Depends(get_current_user_id),
    scope: SessionScope = Depends(get_session_scope),
    services: ServiceRegistry = Depends(get_services),
    db: Session = Depends(get_db),
) -> dict:
    connection = disconnect_connection(db, user_id=user_id, platform=platform)
    if connection is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    db.commit()
    services.cache.clear(user_id, platform)
    scope.stop_refresh(platform)
    return {"platform": platform, "connected": False}
