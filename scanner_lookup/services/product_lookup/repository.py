from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncEngine

from .models import LookupContext, RawMatchRow, SearchRow, UnitRow
from .sql import ProductQueryBuilder

logger = logging.getLogger(__name__)

_NUMERIC_ID = re.compile(r"^\d+$")


class ProductLookupSource(Protocol):
    """Read operations the lookup strategies, assembler and search depend on."""

    async def lookup_by_barcode_table(
        self, barcode: str, context: LookupContext
    ) -> Optional[RawMatchRow]: ...

    async def lookup_by_field(
        self, barcode: str, field_name: str, context: LookupContext
    ) -> Optional[RawMatchRow]: ...

    async def lookup_by_function(
        self, barcode: str, context: LookupContext
    ) -> Optional[RawMatchRow]: ...

    async def lookup_by_composite_keyword(
        self, keyword: str, context: LookupContext
    ) -> Optional[RawMatchRow]: ...

    async def get_units(
        self, product_id: str, matched_barcode: Optional[str]
    ) -> List[UnitRow]: ...

    async def search_by_fragment(
        self, keyword: str, context: LookupContext, limit: int
    ) -> List[SearchRow]: ...


def _unit_sort_key(unit: UnitRow):
    if _NUMERIC_ID.match(unit.unit_id):
        return (0, int(unit.unit_id), unit.unit_id)
    return (1, 0, unit.unit_id)


class ProductLookupRepository:
    """Runs the builder's statements on a read-only engine.

    Every statement is bounded by ``timeout_seconds``; task cancellation and
    driver errors propagate to the caller untouched.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        builder: ProductQueryBuilder,
        timeout_seconds: float,
    ) -> None:
        self._engine = engine
        self._builder = builder
        self._timeout = timeout_seconds

    async def _fetch_all(self, stmt: Select) -> Sequence:
        async with self._engine.connect() as conn:
            result = await asyncio.wait_for(conn.execute(stmt), self._timeout)
            return result.mappings().all()

    async def _fetch_first(self, stmt: Select) -> Optional[RawMatchRow]:
        async with self._engine.connect() as conn:
            result = await asyncio.wait_for(conn.execute(stmt), self._timeout)
            row = result.mappings().first()
        return RawMatchRow.from_mapping(row) if row is not None else None

    async def lookup_by_barcode_table(
        self, barcode: str, context: LookupContext
    ) -> Optional[RawMatchRow]:
        return await self._fetch_first(self._builder.barcode_table_lookup(context, barcode))

    async def lookup_by_field(
        self, barcode: str, field_name: str, context: LookupContext
    ) -> Optional[RawMatchRow]:
        if not field_name:
            return None
        return await self._fetch_first(self._builder.field_lookup(context, field_name, barcode))

    async def lookup_by_function(
        self, barcode: str, context: LookupContext
    ) -> Optional[RawMatchRow]:
        return await self._fetch_first(self._builder.function_lookup(context, barcode))

    async def lookup_by_composite_keyword(
        self, keyword: str, context: LookupContext
    ) -> Optional[RawMatchRow]:
        if not keyword or not keyword.strip():
            return None
        stmt = self._builder.composite_keyword_lookup(context, keyword)
        if stmt is None:
            logger.debug("No composite keyword columns available; skipping fuzzy lookup")
            return None
        return await self._fetch_first(stmt)

    async def get_units(self, product_id: str, matched_barcode: Optional[str]) -> List[UnitRow]:
        if not product_id or not product_id.strip():
            return []
        stmt = self._builder.units_for_product(product_id, matched_barcode)
        if stmt is None:
            return []
        rows = await self._fetch_all(stmt)
        units = [UnitRow.from_mapping(row) for row in rows]
        return sorted(units, key=_unit_sort_key)

    async def search_by_fragment(
        self, keyword: str, context: LookupContext, limit: int
    ) -> List[SearchRow]:
        if not keyword or not keyword.strip() or limit <= 0:
            return []
        stmt = self._builder.fragment_search(context, keyword, limit)
        if stmt is None:
            return []
        rows = await self._fetch_all(stmt)
        return [SearchRow.from_mapping(row) for row in rows]
