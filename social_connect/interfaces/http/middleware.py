from time import perf_counter
from uuid import uuid4

import jwt
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from social_connect.core.security import decode_session_token
from social_connect.infrastructure.logging.context import (
    reset_request_id,
    reset_user_id,
    set_request_id,
    set_user_id,
)
from social_connect.infrastructure.observability.metrics import record_request


class SessionContextMiddleware(BaseHTTPMiddleware):
    """Tags log records with the session identity when a bearer token is present."""

    async def dispatch(self, request: Request, call_next):
        auth_header = request.headers.get("Authorization") or ""
        user_token = None
        if auth_header.lower().startswith("bearer "):
            try:
                claims = decode_session_token(auth_header[7:].strip())
                user_token = set_user_id(claims.auth_id)
            except jwt.PyJWTError:
                # Rejected later by the route dependency.
                user_token = None

        try:
            return await call_next(request)
        finally:
            if user_token is not None:
                reset_user_id(user_token)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started_at = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            record_request(
                method=request.method,
                path=getattr(route, "path", request.url.path),
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        request_token = set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(request_token)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'; object-src 'none';"
        return response
