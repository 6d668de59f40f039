from __future__ import annotations

from typing import List, Optional

from ...config import Settings
from ...errors import ConfigurationError
from .models import LookupContext, SchemaSnapshot
from .schema import SchemaSnapshotCache


class ProductLookupContextBuilder:
    """Resolves configuration against the current schema snapshot, once per request."""

    def __init__(self, schema_cache: SchemaSnapshotCache, settings: Settings) -> None:
        self._schema_cache = schema_cache
        self._settings = settings

    async def build(self) -> LookupContext:
        schema = await self._schema_cache.get_snapshot()
        return build_lookup_context(schema, self._settings)


def resolve_price_field(schema: SchemaSnapshot, settings: Settings) -> Optional[str]:
    """Return the product-table price column, or None when a price table is used.

    Raises ``ConfigurationError`` when neither source is usable.
    """
    if settings.price_table:
        return None

    for candidate in settings.price_fields:
        column = schema.column_name(candidate)
        if column:
            return column
    raise ConfigurationError(f"No available price field found in {settings.product_table}.")


def build_lookup_context(schema: SchemaSnapshot, settings: Settings) -> LookupContext:
    price_field = resolve_price_field(schema, settings)
    specification_field = schema.column_name(settings.specification_field)

    barcode_fields: List[str] = []
    for field_name in settings.barcode_fields:
        column = schema.column_name((field_name or "").strip())
        if column and column not in barcode_fields:
            barcode_fields.append(column)

    can_use_function_fallback = (
        settings.enable_function_fallback
        and schema.has_barcode_function
        and schema.has_column(settings.product_id_field)
    )

    return LookupContext(
        schema=schema,
        price_field=price_field,
        specification_field=specification_field,
        barcode_fields=tuple(barcode_fields),
        use_barcode_table=settings.uses_barcode_table,
        can_use_function_fallback=can_use_function_fallback,
    )
