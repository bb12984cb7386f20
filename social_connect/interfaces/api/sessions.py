import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from social_connect.application.services.platform_connection_service import ensure_user_record, list_connections
from social_connect.application.services.service_registry import ServiceRegistry
from social_connect.core.security import SessionClaims
from social_connect.infrastructure.db.session import get_db
from social_connect.interfaces.api.deps import get_services, get_session_claims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/sign-in", status_code=status.HTTP_200_OK)
async def sign_in(
    claims: SessionClaims = Depends(get_session_claims),
    services: ServiceRegistry = Depends(get_services),
    db: Session = Depends(get_db),
) -> dict:
    user = ensure_user_record(db, auth_id=claims.auth_id, email=claims.email)
    db.commit()

    scope = services.scopes.get_or_create(claims.auth_id)
    user_id = scope.identity.resolve(db)
    connections = list_connections(db, user_id=user_id)
    for connection in connections:
        if connection.connected and connection.platform in services.clients:
            services.start_statistics_refresh(scope, user_id, connection.platform)

    logger.info("session_signed_in auth_id=%s user_id=%s refreshing=%s", claims.auth_id, user_id, ",".join(scope.refresh_platforms()))
    return {
        "user_id": str(user.id),
        "auth_id": claims.auth_id,
        "connections": [
            {"platform": connection.platform, "connected": connection.connected, "username": connection.username}
            for connection in connections
        ],
    }


@router.post("/sign-out", status_code=status.HTTP_200_OK)
async def sign_out(
    claims: SessionClaims = Depends(get_session_claims),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    closed = await services.scopes.close(claims.auth_id)
    logger.info("session_signed_out auth_id=%s had_scope=%s", claims.auth_id, closed)
    return {"signed_out": True}
