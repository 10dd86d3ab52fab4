"""asyncpg pool ownership for the record store.

Connection settings come from ``[teamcal.database]`` in ``teamcal.toml``, from
a libpq-style ``DATABASE_URL``, or from the individual ``POSTGRES_*``
variables, in that order of precedence.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import parse_qs, quote, urlparse

import asyncpg

logger = logging.getLogger(__name__)

SSL_MODES = frozenset({"disable", "allow", "prefer", "require", "verify-ca", "verify-full"})

# asyncpg surfaces a failed STARTTLS negotiation against a non-TLS server as
# a bare ConnectionError with this text.
_STARTTLS_LOST = "unexpected connection_lost() call"


def parse_ssl_mode(value: str | None) -> str | None:
    """Lower-cased libpq sslmode, or ``None`` when unset or unrecognized."""
    if value is None or not value.strip():
        return None
    mode = value.strip().lower()
    if mode not in SSL_MODES:
        logger.warning("Ignoring unknown sslmode %r", value)
        return None
    return mode


@dataclass(frozen=True)
class ConnectionParams:
    host: str = "localhost"
    port: int = 5432
    user: str = "teamcal"
    password: str = "teamcal"
    database: str = "teamcal"
    ssl: str | None = None

    @classmethod
    def from_url(cls, database_url: str) -> ConnectionParams:
        parsed = urlparse(database_url)
        query = parse_qs(parsed.query)
        defaults = cls()
        return cls(
            host=parsed.hostname or defaults.host,
            port=parsed.port or defaults.port,
            user=parsed.username or defaults.user,
            password=parsed.password or defaults.password,
            database=parsed.path.lstrip("/") or defaults.database,
            ssl=parse_ssl_mode(query.get("sslmode", [None])[0]),
        )

    @classmethod
    def from_env(cls) -> ConnectionParams:
        """``DATABASE_URL`` if set, otherwise ``POSTGRES_HOST``/``_PORT``/... ."""
        database_url = os.environ.get("DATABASE_URL")
        if database_url:
            return cls.from_url(database_url)
        env = os.environ
        defaults = cls()
        return cls(
            host=env.get("POSTGRES_HOST", defaults.host),
            port=int(env.get("POSTGRES_PORT", defaults.port)),
            user=env.get("POSTGRES_USER", defaults.user),
            password=env.get("POSTGRES_PASSWORD", defaults.password),
            database=env.get("POSTGRES_DB", defaults.database),
            ssl=parse_ssl_mode(env.get("POSTGRES_SSLMODE")),
        )

    @property
    def url(self) -> str:
        """SQLAlchemy URL for Alembic (credentials percent-encoded)."""
        credentials = f"{quote(self.user, safe='')}:{quote(self.password, safe='')}"
        return f"postgresql://{credentials}@{self.host}:{self.port}/{self.database}"


def is_starttls_failure(exc: BaseException, ssl: str | None) -> bool:
    """True when an implicit (``ssl=None``) TLS attempt hit a plaintext server."""
    return ssl is None and isinstance(exc, ConnectionError) and _STARTTLS_LOST in str(exc)


class Database:
    """Owns the asyncpg pool the record store runs its queries on.

    Constructed once at process start and handed to ``PostgresRecordStore``;
    nothing in the engine reaches for a global connection.
    """

    def __init__(
        self,
        params: ConnectionParams | None = None,
        *,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ) -> None:
        self.params = params or ConnectionParams()
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    @classmethod
    def from_env(cls) -> Database:
        return cls(ConnectionParams.from_env())

    @property
    def name(self) -> str:
        return self.params.database

    @property
    def url(self) -> str:
        return self.params.url

    def _pool_kwargs(self, params: ConnectionParams) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": params.host,
            "port": params.port,
            "user": params.user,
            "password": params.password,
            "database": params.database,
            "min_size": self.min_pool_size,
            "max_size": self.max_pool_size,
        }
        if params.ssl is not None:
            kwargs["ssl"] = params.ssl
        return kwargs

    async def connect(self) -> asyncpg.Pool:
        """Open the pool, falling back to ``ssl=disable`` on a plaintext server."""
        try:
            self.pool = await asyncpg.create_pool(**self._pool_kwargs(self.params))
        except ConnectionError as exc:
            if not is_starttls_failure(exc, self.params.ssl):
                raise
            logger.info(
                "Server rejected TLS upgrade; reconnecting to %s with ssl=disable", self.name
            )
            self.pool = await asyncpg.create_pool(
                **self._pool_kwargs(replace(self.params, ssl="disable"))
            )
        logger.info(
            "Connected to %s@%s:%s (pool %d-%d)",
            self.name,
            self.params.host,
            self.params.port,
            self.min_pool_size,
            self.max_pool_size,
        )
        return self.pool

    async def close(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("Closed pool for %s", self.name)

    # -- query proxies -------------------------------------------------------

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError(f"Database '{self.name}' has no active connection pool")
        return self.pool

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]:
        return await self._require_pool().fetch(query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        return await self._require_pool().fetchrow(query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        return await self._require_pool().fetchval(query, *args, timeout=timeout)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:
        return await self._require_pool().execute(query, *args, timeout=timeout)
