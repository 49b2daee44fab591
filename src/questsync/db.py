"""Postgres provisioning and the asyncpg pool used by the sync store."""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import parse_qs, quote, unquote, urlparse

import asyncpg

logger = logging.getLogger(__name__)

DEFAULT_DB_USER = "questsync"
DEFAULT_DB_PASSWORD = "questsync"

_SSL_MODES = frozenset({"disable", "prefer", "allow", "require", "verify-ca", "verify-full"})
# asyncpg raises this when a server without TLS drops the STARTTLS attempt.
_SSL_UPGRADE_LOST = "unexpected connection_lost() call"


def _ssl_mode(value: str | None) -> str | None:
    """Return a libpq sslmode asyncpg understands, or None for the driver default."""
    mode = (value or "").strip().lower()
    if not mode:
        return None
    if mode not in _SSL_MODES:
        logger.warning("Ignoring invalid PostgreSQL sslmode value: %s", value)
        return None
    return mode


def _db_params_from_database_url(database_url: str) -> dict[str, Any]:
    parsed = urlparse(database_url)
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": unquote(parsed.username) if parsed.username else DEFAULT_DB_USER,
        "password": unquote(parsed.password) if parsed.password else DEFAULT_DB_PASSWORD,
        "ssl": _ssl_mode(parse_qs(parsed.query).get("sslmode", [None])[0]),
    }


def db_params_from_env() -> dict[str, Any]:
    """Connection parameters from ``DATABASE_URL``, else ``POSTGRES_*`` variables."""
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return _db_params_from_database_url(database_url)
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": int(os.environ.get("POSTGRES_PORT", "5432")),
        "user": os.environ.get("POSTGRES_USER", DEFAULT_DB_USER),
        "password": os.environ.get("POSTGRES_PASSWORD", DEFAULT_DB_PASSWORD),
        "ssl": _ssl_mode(os.environ.get("POSTGRES_SSLMODE")),
    }


def should_retry_with_ssl_disable(exc: Exception, configured_ssl: str | None) -> bool:
    """True when the driver's implicit TLS attempt failed and no sslmode was requested."""
    return (
        configured_ssl is None
        and isinstance(exc, ConnectionError)
        and _SSL_UPGRADE_LOST in str(exc)
    )


class Database:
    """One Postgres database: creation, pool lifecycle and its SQLAlchemy URL."""

    def __init__(
        self,
        db_name: str,
        host: str = "localhost",
        port: int = 5432,
        user: str = "postgres",
        password: str = "postgres",
        ssl: str | None = None,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ) -> None:
        self.db_name = db_name
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.ssl = ssl
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls, db_name: str) -> Database:
        params = db_params_from_env()
        return cls(
            db_name=db_name,
            host=str(params["host"]),
            port=int(params["port"]),
            user=str(params["user"]),
            password=str(params["password"]),
            ssl=params["ssl"],
        )

    @property
    def url(self) -> str:
        """``postgresql://`` URL for Alembic; credentials are percent-encoded."""
        credentials = f"{quote(self.user, safe='')}:{quote(self.password, safe='')}"
        url = f"postgresql://{credentials}@{self.host}:{self.port}/{self.db_name}"
        return f"{url}?sslmode={self.ssl}" if self.ssl is not None else url

    def _connect_kwargs(self, database: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database,
        }
        if self.ssl is not None:
            kwargs["ssl"] = self.ssl
        return kwargs

    async def _open(self, opener: Callable[..., Awaitable[Any]], **kwargs: Any) -> Any:
        try:
            return await opener(**kwargs)
        except Exception as exc:
            if not should_retry_with_ssl_disable(exc, self.ssl):
                raise
            logger.info("Retrying PostgreSQL connection to %s with ssl=disable", self.db_name)
            return await opener(**{**kwargs, "ssl": "disable"})

    async def provision(self) -> None:
        """Create the database via the ``postgres`` maintenance database if missing."""
        conn = await self._open(asyncpg.connect, **self._connect_kwargs("postgres"))
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1", self.db_name
            )
            if exists:
                logger.info("Database already exists: %s", self.db_name)
                return
            # Identifiers cannot be bound as parameters.
            quoted = self.db_name.replace('"', '""')
            await conn.execute(f'CREATE DATABASE "{quoted}" TEMPLATE template0')
            logger.info("Created database: %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        self.pool = await self._open(
            asyncpg.create_pool,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            **self._connect_kwargs(self.db_name),
        )
        logger.info("Connection pool created for: %s", self.db_name)
        return self.pool

    async def close(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("Connection pool closed for: %s", self.db_name)

    def require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError(f"Database '{self.db_name}' has no active connection pool")
        return self.pool
