import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from social_connect.core.security import decrypt_secret, encrypt_secret
from social_connect.domain.models.platform_connection import PlatformConnection
from social_connect.domain.models.user import User
from social_connect.infrastructure.db.upsert import upsert_row
from social_connect.integrations.platform_clients.base_client import (
    IdentityResolutionError,
    NotConnectedError,
    PlatformCredentials,
)

logger = logging.getLogger(__name__)

_TOKEN_FIELDS = {"access_token", "refresh_token"}


def get_connection(db: Session, *, user_id: UUID, platform: str) -> PlatformConnection | None:
    return db.execute(
        select(PlatformConnection)
        .where(
            PlatformConnection.user_id == user_id,
            PlatformConnection.platform == platform.strip().lower(),
        )
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def list_connections(db: Session, *, user_id: UUID) -> list[PlatformConnection]:
    return list(
        db.execute(
            select(PlatformConnection)
            .where(PlatformConnection.user_id == user_id)
            .order_by(PlatformConnection.platform.asc())
        ).scalars()
    )


def upsert_connection(db: Session, *, user_id: UUID, platform: str, **fields) -> PlatformConnection:
    """Write the (user, platform) connection row; concurrent writers resolve last-write-wins.

    Plaintext ``access_token`` / ``refresh_token`` values are encrypted before
    they reach the table. Fields not passed keep their stored value.
    """
    values: dict = {"user_id": user_id, "platform": platform.strip().lower()}
    for name, value in fields.items():
        if name in _TOKEN_FIELDS:
            values[name] = encrypt_secret(value) if value else None
        else:
            values[name] = value
    connection = upsert_row(
        db,
        PlatformConnection,
        values=values,
        conflict_columns=("user_id", "platform"),
    )
    logger.info(
        "platform_connection_upserted user_id=%s platform=%s connected=%s",
        user_id,
        values["platform"],
        connection.connected,
    )
    return connection


def mark_verified(db: Session, connection: PlatformConnection) -> PlatformConnection:
    connection.connected = True
    connection.last_verified = datetime.now(UTC)
    db.add(connection)
    return connection


def mark_disconnected(db: Session, connection: PlatformConnection) -> PlatformConnection:
    connection.connected = False
    db.add(connection)
    return connection


def disconnect_connection(db: Session, *, user_id: UUID, platform: str) -> PlatformConnection | None:
    connection = get_connection(db, user_id=user_id, platform=platform)
    if connection is None:
        return None
    connection.connected = False
    connection.access_token = None
    connection.refresh_token = None
    connection.token_expires_at = None
    db.add(connection)
    logger.info("platform_connection_disconnected user_id=%s platform=%s", user_id, connection.platform)
    return connection


def credentials_for(connection: PlatformConnection | None) -> PlatformCredentials:
    if connection is None or not connection.connected or not connection.access_token:
        platform = connection.platform if connection is not None else None
        raise NotConnectedError(f"{(platform or 'Platform').title()} account is not connected", platform=platform)
    return PlatformCredentials(
        access_token=decrypt_secret(connection.access_token),
        token_secret=decrypt_secret(connection.refresh_token or "") or None,
        external_account_id=connection.external_account_id,
        expires_at=connection.token_expires_at,
    )


def find_user_record_id(db: Session, auth_id: str) -> UUID | None:
    return db.execute(select(User.id).where(User.auth_id == auth_id)).scalar_one_or_none()


def ensure_user_record(db: Session, *, auth_id: str, email: str | None = None) -> User:
    values = {"auth_id": auth_id}
    if email:
        values["email"] = email
    return upsert_row(db, User, values=values, conflict_columns=("auth_id",))


def resolve_internal_user_id(db: Session, session_user_id: str | UUID) -> UUID:
    """Map a session identity onto the ``users.id`` used as foreign key.

    Some sessions already carry the internal id; others carry the auth
    provider's id, which is looked up through ``users.auth_id``.
    """
    raw = str(session_user_id).strip()
    try:
        candidate = UUID(raw)
    except ValueError:
        candidate = None
    if candidate is not None and db.get(User, candidate) is not None:
        return candidate

    record_id = find_user_record_id(db, raw)
    if record_id is None:
        raise IdentityResolutionError(f"No user record for session identity {raw}")
    return record_id


class IdentityResolver:
    """Memoized :func:`resolve_internal_user_id` for one session."""

    def __init__(self, session_user_id: str) -> None:
        self.session_user_id = session_user_id
        self._internal_id: UUID | None = None

    @property
    def resolved(self) -> UUID | None:
        return self._internal_id

    def resolve(self, db: Session) -> UUID:
        if self._internal_id is None:
            self._internal_id = resolve_internal_user_id(db, self.session_user_id)
        return self._internal_id

    def reset(self) -> None:
        self._internal_id = None
