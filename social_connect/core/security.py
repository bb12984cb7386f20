import base64
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
from cryptography.fernet import Fernet, InvalidToken

from social_connect.core.config import settings


@dataclass(frozen=True)
class SessionClaims:
    auth_id: str
    email: str | None
    token_id: str | None


def _get_fernet() -> Fernet:
    secret_source = settings.token_encryption_key or settings.auth_jwt_secret
    digest = hashlib.sha256(secret_source.encode("utf-8")).digest()
    key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


def create_session_token(auth_id: str, email: str | None = None, expires_minutes: int | None = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.auth_session_expire_minutes
    )
    payload = {
        "sub": auth_id,
        "exp": expire,
        "jti": str(uuid4()),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def decode_session_token(token: str) -> SessionClaims:
    payload = jwt.decode(token, settings.auth_jwt_secret, algorithms=[settings.auth_jwt_algorithm])
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise jwt.InvalidTokenError("Session token has no subject")
    return SessionClaims(auth_id=subject.strip(), email=payload.get("email"), token_id=payload.get("jti"))


def encrypt_secret(secret: str) -> str:
    if not secret:
        return ""
    fernet = _get_fernet()
    return fernet.encrypt(secret.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted_secret: str) -> str:
    if not encrypted_secret:
        return ""
    fernet = _get_fernet()
    try:
        return fernet.decrypt(encrypted_secret.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise ValueError("Invalid encrypted secret") from exc
