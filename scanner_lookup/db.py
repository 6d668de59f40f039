from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .config import Settings


engine: Optional[AsyncEngine] = None


def create_engine_from_settings(settings: Settings) -> Optional[AsyncEngine]:
    url = normalize_database_url(settings.database_url)
    if not url:
        return None
    return create_async_engine(url, future=True, pool_pre_ping=True)


def get_engine() -> AsyncEngine:
    if engine is None:
        raise RuntimeError("Database not configured")
    return engine


async def dispose_engine() -> None:
    global engine
    if engine is not None:
        await engine.dispose()
    engine = None


def normalize_database_url(raw_url: Optional[str]) -> Optional[str]:
    """Map plain connection URLs onto the async drivers we ship with.

    ``postgres://``/``postgresql://`` go to asyncpg (``sslmode`` is rewritten to
    asyncpg's ``ssl`` keyword), ``mssql://`` goes to aioodbc. Anything that
    already names a driver is returned untouched.
    """
    if not raw_url:
        return raw_url

    url = raw_url
    if url.startswith("mssql://"):
        return url.replace("mssql://", "mssql+aioodbc://", 1)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    parsed = urlparse(url)
    if not parsed.scheme.startswith("postgresql+asyncpg"):
        return url

    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    sslmode = query.pop("sslmode", None)
    if sslmode:
        query["ssl"] = sslmode.lower()
    elif "ssl" in query:
        # normalize accepted asyncpg keywords
        allowed = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}
        query["ssl"] = query["ssl"].lower()
        if query["ssl"] not in allowed:
            query["ssl"] = "disable"

    normalized_query = urlencode(query)
    return urlunparse(parsed._replace(query=normalized_query))
