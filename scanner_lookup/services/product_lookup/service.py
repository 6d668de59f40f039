from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from ...config import Settings
from ...schemas import (
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_LIMIT,
    MIN_SEARCH_KEYWORD_LENGTH,
    LookupResult,
    SearchResultItem,
)
from .candidates import build_lookup_candidates
from .context import ProductLookupContextBuilder
from .mapper import ProductLookupResultMapper
from .models import LookupContext, LookupMatch
from .repository import ProductLookupRepository, ProductLookupSource
from .schema import DatabaseSchemaProbe, SchemaSnapshotCache
from .sql import ProductQueryBuilder
from .strategies import (
    BarcodeFieldExactStrategy,
    BarcodeTableExactStrategy,
    CompatibilityCompositeStrategy,
    FunctionFallbackStrategy,
    ProductLookupStrategy,
)

logger = logging.getLogger(__name__)


def normalize_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_SEARCH_LIMIT
    return min(limit, MAX_SEARCH_LIMIT)


def redact_key(value: Optional[str]) -> str:
    text = (value or "").strip()
    if len(text) <= 5:
        return "*" * len(text)
    return f"{text[:3]}{'*' * (len(text) - 5)}{text[-2:]}"


class ProductLookupService:
    """Resolves a scanned code, or searches by fragment, against the product store.

    Exact strategies run in a fixed order for every candidate (outer loop over
    candidates); the first hit wins. Only when every candidate has missed every
    exact strategy does the compatibility strategy get a turn.
    """

    def __init__(
        self,
        source: ProductLookupSource,
        context_builder: ProductLookupContextBuilder,
        mapper: ProductLookupResultMapper,
        exact_strategies: Sequence[ProductLookupStrategy],
        compatibility_strategy: Optional[ProductLookupStrategy],
        slow_query_threshold_ms: int = 300,
    ) -> None:
        self._source = source
        self._context_builder = context_builder
        self._mapper = mapper
        self._exact_strategies: Tuple[ProductLookupStrategy, ...] = tuple(exact_strategies)
        self._compatibility_strategy = compatibility_strategy
        self._slow_query_threshold_ms = slow_query_threshold_ms

    async def lookup(self, barcode: str) -> Optional[LookupResult]:
        candidates = build_lookup_candidates(barcode)
        if not candidates:
            self._log_completion("lookup", barcode, time.perf_counter(), "rejected")
            return None

        started = time.perf_counter()
        outcome = "error"
        try:
            with structlog.contextvars.bound_contextvars(operation="lookup"):
                context = await self._context_builder.build()
                match = await self._run_exact(candidates, context)
                if match is None:
                    match = await self._run_compatibility(candidates, context)
                if match is None:
                    outcome = "miss"
                    return None
                result = await self._mapper.map(match.row, match.matched_by)
            outcome = "hit"
            return result
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        finally:
            self._log_completion("lookup", barcode, started, outcome)

    async def search_by_fragment(self, keyword: str, limit: Optional[int] = None) -> List[SearchResultItem]:
        normalized_keyword = (keyword or "").strip()
        if len(normalized_keyword) < MIN_SEARCH_KEYWORD_LENGTH:
            self._log_completion("search", normalized_keyword, time.perf_counter(), "rejected")
            return []

        safe_limit = normalize_limit(limit)
        started = time.perf_counter()
        outcome = "error"
        try:
            with structlog.contextvars.bound_contextvars(operation="search"):
                context = await self._context_builder.build()
                if not context.use_barcode_table and not context.barcode_fields:
                    logger.warning("Fragment search has no usable barcode source; returning no results")
                    outcome = "miss"
                    return []

                rows = await self._source.search_by_fragment(normalized_keyword, context, safe_limit)
            outcome = "hit" if rows else "miss"
            return [
                SearchResultItem(
                    productId=row.product_id,
                    productName=row.product_name,
                    productCode=row.product_code,
                    productShortCode=row.product_short_code,
                    specification=row.specification,
                    price=row.price,
                    barcode=row.barcode,
                    matchedBy=row.matched_by,
                )
                for row in rows[:safe_limit]
            ]
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        finally:
            self._log_completion("search", normalized_keyword, started, outcome)

    async def _run_exact(self, candidates: Sequence[str], context: LookupContext) -> Optional[LookupMatch]:
        for candidate in candidates:
            for strategy in self._exact_strategies:
                match = await strategy.attempt(candidate, context)
                if match is not None:
                    return match
        if not context.can_use_function_fallback:
            logger.debug("Function fallback disabled or legacy barcode function unavailable")
        return None

    async def _run_compatibility(
        self, candidates: Sequence[str], context: LookupContext
    ) -> Optional[LookupMatch]:
        if self._compatibility_strategy is None:
            return None
        for candidate in candidates:
            match = await self._compatibility_strategy.attempt(candidate, context)
            if match is not None:
                return match
        return None

    def _log_completion(self, operation: str, key: str, started: float, outcome: str) -> None:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        fields = {
            "operation": operation,
            "elapsed_ms": elapsed_ms,
            "outcome": outcome,
            "key": redact_key(key),
        }
        if elapsed_ms >= self._slow_query_threshold_ms:
            logger.warning("Slow product %s", operation, extra=fields)
        else:
            logger.debug("Product %s completed", operation, extra=fields)


def create_product_lookup_service(settings: Settings, engine: AsyncEngine) -> ProductLookupService:
    """Wire the engine-backed repository, schema cache and strategy chain."""
    builder = ProductQueryBuilder(settings)
    repository = ProductLookupRepository(engine, builder, settings.query_timeout_seconds)
    probe = DatabaseSchemaProbe(
        engine,
        settings.product_table,
        settings.legacy_barcode_function,
        settings.query_timeout_seconds,
    )
    schema_cache = SchemaSnapshotCache(probe, settings.schema_cache_minutes)
    return build_product_lookup_service(
        repository,
        ProductLookupContextBuilder(schema_cache, settings),
        settings,
    )


def build_product_lookup_service(
    source: ProductLookupSource,
    context_builder: ProductLookupContextBuilder,
    settings: Settings,
) -> ProductLookupService:
    return ProductLookupService(
        source=source,
        context_builder=context_builder,
        mapper=ProductLookupResultMapper(source, settings),
        exact_strategies=(
            BarcodeTableExactStrategy(source, settings.barcode_column),
            BarcodeFieldExactStrategy(source),
            FunctionFallbackStrategy(source),
        ),
        compatibility_strategy=CompatibilityCompositeStrategy(source),
        slow_query_threshold_ms=settings.slow_query_threshold_ms,
    )
