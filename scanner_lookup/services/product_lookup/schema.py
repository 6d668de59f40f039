from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, FrozenSet, Optional, Protocol

import sqlalchemy as sa
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncEngine

from .models import SchemaSnapshot
from .sql import split_table_name

logger = logging.getLogger(__name__)

MIN_SCHEMA_CACHE_MINUTES = 1


class SchemaProbe(Protocol):
    async def fetch_columns(self) -> FrozenSet[str]: ...

    async def has_barcode_function(self) -> bool: ...


class DatabaseSchemaProbe:
    """Reads the product table's columns and the legacy function's presence."""

    def __init__(
        self,
        engine: AsyncEngine,
        product_table: str,
        function_name: str,
        timeout_seconds: float,
    ) -> None:
        self._engine = engine
        self._schema, self._table = split_table_name(product_table)
        self._function_schema, self._function = split_table_name(function_name)
        self._timeout = timeout_seconds

    async def fetch_columns(self) -> FrozenSet[str]:
        def _inspect(sync_conn) -> FrozenSet[str]:
            try:
                columns = sa.inspect(sync_conn).get_columns(self._table, schema=self._schema)
            except NoSuchTableError:
                logger.warning("Product table %s not found; schema snapshot is empty", self._table)
                return frozenset()
            return frozenset(column["name"] for column in columns)

        async with self._engine.connect() as conn:
            return await asyncio.wait_for(conn.run_sync(_inspect), self._timeout)

    async def has_barcode_function(self) -> bool:
        dialect = self._engine.dialect.name
        if dialect == "mssql":
            qualified = (
                f"{self._function_schema}.{self._function}" if self._function_schema else self._function
            )
            stmt = sa.text(
                "SELECT CASE WHEN OBJECT_ID(:name, 'FN') IS NOT NULL THEN 1 ELSE 0 END"
            ).bindparams(name=qualified)
        elif dialect == "postgresql":
            stmt = sa.text(
                "SELECT CASE WHEN EXISTS ("
                " SELECT 1 FROM pg_proc p JOIN pg_namespace n ON n.oid = p.pronamespace"
                " WHERE lower(p.proname) = lower(:name)"
                " AND (CAST(:schema AS TEXT) IS NULL OR lower(n.nspname) = lower(:schema))"
                ") THEN 1 ELSE 0 END"
            ).bindparams(name=self._function, schema=self._function_schema)
        else:
            return False

        async with self._engine.connect() as conn:
            result = await asyncio.wait_for(conn.execute(stmt), self._timeout)
            return int(result.scalar_one() or 0) == 1


class SchemaSnapshotCache:
    """Time-boxed schema snapshot with a single refresh in flight.

    Readers take the current snapshot without locking. On expiry one caller
    refreshes under ``_lock``; everyone queued behind it re-checks and reuses
    the new snapshot instead of probing again. A failed refresh caches nothing.
    """

    def __init__(
        self,
        probe: SchemaProbe,
        ttl_minutes: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self._ttl_seconds = max(MIN_SCHEMA_CACHE_MINUTES, int(ttl_minutes or 0)) * 60
        self._clock = clock
        self._lock = asyncio.Lock()
        self._snapshot: Optional[SchemaSnapshot] = None

    @property
    def current(self) -> Optional[SchemaSnapshot]:
        return self._snapshot

    async def get_snapshot(self) -> SchemaSnapshot:
        snapshot = self._snapshot
        if snapshot is not None and snapshot.is_fresh(self._clock()):
            return snapshot

        async with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and snapshot.is_fresh(self._clock()):
                return snapshot

            columns = await self._probe.fetch_columns()
            has_function = await self._probe.has_barcode_function()
            snapshot = SchemaSnapshot.build(
                columns,
                has_function,
                expires_at=self._clock() + self._ttl_seconds,
            )
            self._snapshot = snapshot
            logger.debug(
                "Schema snapshot refreshed",
                extra={"columns": len(snapshot.columns), "has_barcode_function": has_function},
            )
            return snapshot

    def invalidate(self) -> None:
        self._snapshot = None
