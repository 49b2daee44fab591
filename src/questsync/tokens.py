"""Access-token lifecycle for provider connections."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from questsync.config import DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS
from questsync.core.locks import KeyedLocks
from questsync.errors import ProviderRequestError, TokenRefreshError, TokenUnavailableError
from questsync.models import Connection
from questsync.providers.base import CalendarProvider

logger = logging.getLogger(__name__)


class TokenPersistence(Protocol):
    """Persistence contract for refreshed connection tokens."""

    async def update_tokens(
        self,
        connection_id: UUID,
        *,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        """Store a new access token; keep the old refresh token when ``None``."""
        ...


class TokenManager:
    """Hands out non-expired access tokens, refreshing and persisting as needed."""

    def __init__(
        self,
        *,
        provider: CalendarProvider,
        store: TokenPersistence,
        refresh_margin: timedelta = timedelta(seconds=DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._refresh_margin = refresh_margin
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks = KeyedLocks()
        # Grant for callers still queued on the lock: (access_token, expires_at, refresh_token).
        self._refreshed: dict[UUID, tuple[str, datetime, str | None]] = {}

    def _is_fresh(self, connection: Connection) -> bool:
        expires_at = _as_aware(connection.token_expires_at)
        return self._clock() < expires_at - self._refresh_margin

    async def get_valid_access_token(self, connection: Connection) -> str:
        """Return a usable access token for *connection*.

        On refresh, *connection* is updated in place with the new token,
        expiry and (when rotated) refresh token.

        Raises
        ------
        TokenUnavailableError
            If the token is stale and cannot be refreshed.
        """
        if self._is_fresh(connection):
            return connection.access_token

        try:
            async with self._locks.hold(connection.id):
                # Another caller may have refreshed while we waited.
                self._apply_refreshed(connection)
                if self._is_fresh(connection):
                    return connection.access_token
                return await self._refresh(connection)
        finally:
            if not self._locks.in_use(connection.id):
                self._refreshed.pop(connection.id, None)

    async def _refresh(self, connection: Connection) -> str:
        if not connection.refresh_token:
            raise TokenUnavailableError("Token expired and no refresh token is stored")
        if not self._provider.is_configured:
            raise TokenUnavailableError(
                f"Token expired and {self._provider.name} client credentials are not configured"
            )

        try:
            grant = await self._provider.refresh_access_token(connection.refresh_token)
        except (TokenRefreshError, ProviderRequestError) as exc:
            logger.warning(
                "Token refresh failed for connection=%s provider=%s: %s",
                connection.id,
                self._provider.name,
                exc,
            )
            raise TokenUnavailableError("Token expired and refresh failed") from exc

        expires_at = self._clock() + timedelta(seconds=grant.expires_in)
        await self._store.update_tokens(
            connection.id,
            access_token=grant.access_token,
            token_expires_at=expires_at,
            refresh_token=grant.refresh_token,
        )

        self._refreshed[connection.id] = (grant.access_token, expires_at, grant.refresh_token)
        self._apply_refreshed(connection)

        logger.info(
            "Refreshed access token for connection=%s provider=%s (expires_at=%s)",
            connection.id,
            self._provider.name,
            expires_at.isoformat(),
        )
        return grant.access_token

    def _apply_refreshed(self, connection: Connection) -> None:
        cached = self._refreshed.get(connection.id)
        if cached is None:
            return
        access_token, expires_at, refresh_token = cached
        if expires_at <= _as_aware(connection.token_expires_at):
            return
        connection.access_token = access_token
        connection.token_expires_at = expires_at
        if refresh_token:
            connection.refresh_token = refresh_token


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
