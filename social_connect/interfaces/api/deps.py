from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from social_connect.application.services.service_registry import ServiceRegistry
from social_connect.application.services.session_scope import SessionScope
from social_connect.core.security import SessionClaims, decode_session_token
from social_connect.infrastructure.db.session import get_db
from social_connect.integrations.platform_clients import IdentityResolutionError

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> ServiceRegistry:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services are not initialised")
    return services


def get_session_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> SessionClaims:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing session token")
    try:
        return decode_session_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token") from exc


def get_session_scope(
    claims: SessionClaims = Depends(get_session_claims),
    services: ServiceRegistry = Depends(get_services),
) -> SessionScope:
    return services.scopes.get_or_create(claims.auth_id)


def get_current_user_id(
    scope: SessionScope = Depends(get_session_scope),
    db: Session = Depends(get_db),
) -> UUID:
    try:
        return scope.identity.resolve(db)
    except IdentityResolutionError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": exc.error_code, "message": "Unknown user. Sign in first."},
        ) from exc


def require_platform(platform: str, services: ServiceRegistry = Depends(get_services)) -> str:
    normalized = platform.strip().lower()
    if normalized not in services.clients:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unsupported platform: {normalized}")
    return normalized
