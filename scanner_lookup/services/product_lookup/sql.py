"""Schema-adapted SELECT statements for the legacy retail product schema.

Every identifier that reaches a statement comes from configuration or from
schema introspection and is checked against ``IDENTIFIER_PATTERN`` first;
scanned values and search keywords only ever travel as bound parameters.
Statements are SQLAlchemy Core constructs, so the same builder renders for
SQL Server, PostgreSQL and SQLite.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import reduce
from typing import Iterable, List, Optional, Sequence, Tuple

import sqlalchemy as sa
from sqlalchemy import ColumnElement, FromClause, Select

from ...config import Settings
from ...errors import ConfigurationError
from .models import LookupContext, SchemaSnapshot

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

PRODUCT_CODE_FIELD = "pusercode"
PRODUCT_SHORT_CODE_FIELD = "pnamepy"
COMPOSITE_KEYWORD_FIELDS = ("pusercode", "pfullname", "pnamepy", "Standard", "Type", "Area")
COMPOSITE_SEPARATOR = "^^^"
LIKE_ESCAPE = "\\"

# Columns shared by the barcode, price and unit tables of the legacy schema.
XREF_PRODUCT_ID = "PTypeId"
XREF_UNIT_ID = "UnitID"
PRICE_TYPE_COLUMN = "PRTypeId"
DEFAULT_PRICE_TYPE_ID = "0001"
UNIT_ID_COLUMN = "Ordid"
UNIT_NAME_COLUMN = "Unit1"
UNIT_RATE_COLUMN = "URate"
UNIT_SCOPED_PRICE_TABLES = frozenset({"xw_p_ptypeprice", "dbo.xw_p_ptypeprice"})

BARCODE_TABLE_LABEL = "BarcodeTable"

PRICE_TYPE = sa.Numeric(18, 2)
BARCODE_TYPE = sa.Unicode(100)
SHORT_TEXT_TYPE = sa.Unicode(100)
NAME_TYPE = sa.Unicode(200)
ID_TYPE = sa.Unicode(50)
COMPOSITE_TYPE = sa.Unicode(4000)


def validate_identifier(identifier: Optional[str]) -> str:
    if not identifier or not IDENTIFIER_PATTERN.match(identifier):
        raise ConfigurationError(f"Invalid column name: {identifier!r}")
    return identifier


def split_table_name(table_name: Optional[str]) -> Tuple[Optional[str], str]:
    """Return ``(schema, table)`` for ``table`` or ``schema.table``."""
    parts = [part.strip() for part in (table_name or "").split(".") if part.strip()]
    if len(parts) not in (1, 2):
        raise ConfigurationError(f"Invalid table name: {table_name!r}")
    for part in parts:
        if not IDENTIFIER_PATTERN.match(part):
            raise ConfigurationError(f"Invalid table name: {table_name!r}")
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], parts[1]


def is_unit_scoped_price_table(table_name: Optional[str]) -> bool:
    if not table_name or not table_name.strip():
        return False
    normalized = table_name.replace("[", "").replace("]", "").strip().lower()
    return normalized in UNIT_SCOPED_PRICE_TABLES


def escape_like_value(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
        .replace("[", "\\[")
    )


def build_contains_pattern(keyword: str) -> str:
    return f"%{escape_like_value(keyword)}%"


def build_prefix_pattern(keyword: str) -> str:
    return f"{escape_like_value(keyword)}%"


def _table(table_name: str, columns: Iterable[str], alias: str) -> FromClause:
    schema, name = split_table_name(table_name)
    unique: dict[str, None] = {}
    for column in columns:
        unique.setdefault(column, None)
    return sa.table(name, *(sa.column(column) for column in unique), schema=schema).alias(alias)


@dataclass(frozen=True)
class SearchTarget:
    expression: ColumnElement
    matched_by: str
    barcode: ColumnElement


class ProductQueryBuilder:
    """Builds the lookup, unit and search statements for one deployment."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        split_table_name(settings.product_table)
        validate_identifier(settings.product_id_field)
        validate_identifier(settings.product_name_field)
        if settings.specification_field:
            validate_identifier(settings.specification_field)
        for field_name in list(settings.barcode_fields) + list(settings.price_fields):
            validate_identifier(field_name)

        self.barcode_table = settings.barcode_table if settings.uses_barcode_table else None
        self.barcode_column = (
            validate_identifier(settings.barcode_column) if self.barcode_table else None
        )
        if self.barcode_table:
            split_table_name(self.barcode_table)

        self.price_table = settings.price_table if settings.uses_price_table else None
        self.price_column = validate_identifier(settings.price_column) if self.price_table else None
        if self.price_table:
            split_table_name(self.price_table)

        self.unit_table = settings.unit_table
        if self.unit_table:
            split_table_name(self.unit_table)

        function_parts = [part.strip() for part in settings.legacy_barcode_function.split(".")]
        if len(function_parts) not in (1, 2):
            raise ConfigurationError(
                f"Invalid function name: {settings.legacy_barcode_function!r}"
            )
        for part in function_parts:
            validate_identifier(part)
        self.function_parts: Tuple[str, ...] = tuple(function_parts)

        self.preferred_price_type_id = (settings.price_type_id or "").strip() or None
        self.unit_scoped_price = is_unit_scoped_price_table(self.price_table)

    # -- tables -----------------------------------------------------------------

    def _product_table(self, schema: SchemaSnapshot, alias: str = "p") -> FromClause:
        columns = [name for name in schema.columns.values() if IDENTIFIER_PATTERN.match(name)]
        columns.append(self._product_key_name(schema))
        columns.append(self._product_name_column(schema))
        return _table(self.settings.product_table, columns, alias)

    def _barcode_table(self, alias: str) -> FromClause:
        if not (self.barcode_table and self.barcode_column):
            raise ConfigurationError("Barcode table lookups need barcode_table and barcode_column.")
        return _table(
            self.barcode_table,
            [XREF_PRODUCT_ID, XREF_UNIT_ID, self.barcode_column],
            alias,
        )

    def _price_table(self, alias: str) -> FromClause:
        if not (self.price_table and self.price_column):
            raise ConfigurationError("Price table lookups need price_table and price_column.")
        return _table(
            self.price_table,
            [XREF_PRODUCT_ID, XREF_UNIT_ID, PRICE_TYPE_COLUMN, self.price_column],
            alias,
        )

    def _unit_table(self, alias: str) -> FromClause:
        if not self.unit_table:
            raise ConfigurationError("Unit lookups need unit_table.")
        return _table(
            self.unit_table,
            [XREF_PRODUCT_ID, UNIT_ID_COLUMN, UNIT_NAME_COLUMN, UNIT_RATE_COLUMN],
            alias,
        )

    def _product_key_name(self, schema: SchemaSnapshot) -> str:
        return schema.column_name(self.settings.product_id_field) or self.settings.product_id_field

    def _product_name_column(self, schema: SchemaSnapshot) -> str:
        return schema.column_name(self.settings.product_name_field) or self.settings.product_name_field

    def _product_key(self, p: FromClause, schema: SchemaSnapshot) -> ColumnElement:
        return p.c[self._product_key_name(schema)]

    # -- projections --------------------------------------------------------------

    def product_id_expression(self, p: FromClause, schema: SchemaSnapshot) -> ColumnElement:
        if not schema.has_column(self.settings.product_id_field):
            return sa.cast(sa.null(), ID_TYPE)
        return sa.cast(self._product_key(p, schema), ID_TYPE)

    def optional_text_expression(
        self, p: FromClause, schema: SchemaSnapshot, field_name: str, length: int = 100
    ) -> ColumnElement:
        column = schema.column_name(field_name)
        if column is None:
            return sa.cast(sa.literal(""), sa.Unicode(length))
        return sa.cast(sa.func.coalesce(p.c[column], ""), sa.Unicode(length))

    def specification_expression(
        self, p: FromClause, specification_field: Optional[str]
    ) -> ColumnElement:
        if not specification_field:
            return sa.cast(sa.null(), NAME_TYPE)
        return sa.cast(p.c[specification_field], NAME_TYPE)

    def preferred_barcode_expression(
        self, p: FromClause, barcode_fields: Sequence[str]
    ) -> ColumnElement:
        if not barcode_fields:
            return sa.cast(sa.literal(""), BARCODE_TYPE)
        candidates = [
            sa.func.nullif(sa.cast(p.c[field_name], BARCODE_TYPE), "")
            for field_name in barcode_fields
        ]
        return sa.cast(sa.func.coalesce(*candidates, ""), BARCODE_TYPE)

    def legacy_barcode_expression(self, product_key: ColumnElement) -> ColumnElement:
        function = reduce(getattr, self.function_parts, sa.func)
        return function(sa.literal("B"), product_key, sa.literal(0))

    def _price_type_rank(self, price_type: ColumnElement) -> ColumnElement:
        if self.preferred_price_type_id:
            return sa.case(
                (price_type == self.preferred_price_type_id, 0),
                (price_type == DEFAULT_PRICE_TYPE_ID, 1),
                else_=2,
            )
        return sa.case((price_type == DEFAULT_PRICE_TYPE_ID, 0), else_=1)

    def preferred_price_subquery(
        self, product_key: ColumnElement, unit_key: Optional[ColumnElement] = None
    ) -> ColumnElement:
        """Price of the preferred price type (then ``0001``) for a product/unit."""
        raw = self._price_table("prRaw")
        conditions = [raw.c[XREF_PRODUCT_ID] == product_key]
        order_by = [self._price_type_rank(raw.c[PRICE_TYPE_COLUMN]), raw.c[PRICE_TYPE_COLUMN]]
        if unit_key is not None:
            conditions.append(raw.c[XREF_UNIT_ID] == unit_key)
        else:
            order_by.append(raw.c[XREF_UNIT_ID])
        return (
            sa.select(raw.c[self.price_column])
            .where(*conditions)
            .order_by(*order_by)
            .limit(1)
            .scalar_subquery()
        )

    def _with_price(
        self,
        from_clause: FromClause,
        p: FromClause,
        context: LookupContext,
        barcode_alias: Optional[FromClause] = None,
    ) -> Tuple[FromClause, ColumnElement]:
        """Attach the price source and return ``(from_clause, price_expression)``."""
        product_key = self._product_key(p, context.schema)
        if self.price_table:
            if self.unit_scoped_price:
                unit_key = barcode_alias.c[XREF_UNIT_ID] if barcode_alias is not None else None
                price = sa.func.coalesce(self.preferred_price_subquery(product_key, unit_key), 0)
                return from_clause, sa.cast(price, PRICE_TYPE)
            pr = self._price_table("pr")
            joined = from_clause.join(pr, product_key == pr.c[XREF_PRODUCT_ID])
            return joined, sa.cast(pr.c[self.price_column], PRICE_TYPE)

        if not context.price_field:
            raise ConfigurationError("No usable price field is configured for product lookups.")
        return from_clause, sa.cast(p.c[context.price_field], PRICE_TYPE)

    def _product_projection(
        self,
        p: FromClause,
        context: LookupContext,
        price: ColumnElement,
    ) -> List[ColumnElement]:
        schema = context.schema
        return [
            self.product_id_expression(p, schema).label("product_id"),
            sa.cast(p.c[self._product_name_column(schema)], NAME_TYPE).label("product_name"),
            self.optional_text_expression(p, schema, PRODUCT_CODE_FIELD).label("product_code"),
            self.optional_text_expression(p, schema, PRODUCT_SHORT_CODE_FIELD).label(
                "product_short_code"
            ),
            self.specification_expression(p, context.specification_field).label("specification"),
            price.label("price"),
        ]

    # -- exact lookups ------------------------------------------------------------

    def barcode_table_lookup(self, context: LookupContext, barcode: str) -> Select:
        if not self.barcode_table:
            raise ConfigurationError("Barcode table lookups need barcode_table and barcode_column.")
        p = self._product_table(context.schema)
        bc = self._barcode_table("bc")
        from_clause = bc.join(p, bc.c[XREF_PRODUCT_ID] == self._product_key(p, context.schema))
        from_clause, price = self._with_price(from_clause, p, context, bc)
        return (
            sa.select(
                *self._product_projection(p, context, price),
                sa.cast(bc.c[XREF_UNIT_ID], ID_TYPE).label("matched_unit_id"),
                sa.cast(bc.c[self.barcode_column], BARCODE_TYPE).label("matched_barcode"),
            )
            .select_from(from_clause)
            .where(bc.c[self.barcode_column] == barcode)
            .limit(1)
        )

    def field_lookup(self, context: LookupContext, field_name: str, barcode: str) -> Select:
        p = self._product_table(context.schema)
        column = context.schema.column_name(field_name) or validate_identifier(field_name)
        from_clause, price = self._with_price(p, p, context)
        return (
            sa.select(
                *self._product_projection(p, context, price),
                sa.cast(sa.null(), ID_TYPE).label("matched_unit_id"),
                sa.cast(sa.literal(barcode), BARCODE_TYPE).label("matched_barcode"),
            )
            .select_from(from_clause)
            .where(p.c[column] == barcode)
            .limit(1)
        )

    def function_lookup(self, context: LookupContext, barcode: str) -> Select:
        p = self._product_table(context.schema)
        from_clause, price = self._with_price(p, p, context)
        derived = self.legacy_barcode_expression(self._product_key(p, context.schema))
        return (
            sa.select(
                *self._product_projection(p, context, price),
                sa.cast(sa.null(), ID_TYPE).label("matched_unit_id"),
                sa.cast(sa.literal(barcode), BARCODE_TYPE).label("matched_barcode"),
            )
            .select_from(from_clause)
            .where(derived == barcode)
            .limit(1)
        )

    # -- legacy composite keyword -------------------------------------------------

    def composite_keyword_expression(
        self, p: FromClause, context: LookupContext
    ) -> Optional[ColumnElement]:
        """All descriptive columns joined with ``^^^``, as the old front office stored them."""
        schema = context.schema
        parts: List[ColumnElement] = []
        for field_name in COMPOSITE_KEYWORD_FIELDS:
            column = schema.column_name(field_name)
            if column is None:
                continue
            parts.append(sa.func.coalesce(sa.cast(p.c[column], COMPOSITE_TYPE), ""))

        if schema.has_barcode_function and schema.has_column(self.settings.product_id_field):
            derived = self.legacy_barcode_expression(self._product_key(p, schema))
            parts.append(sa.func.coalesce(sa.cast(derived, COMPOSITE_TYPE), ""))

        if not parts:
            return None

        expression = parts[0]
        for part in parts[1:]:
            expression = expression + sa.literal(COMPOSITE_SEPARATOR, COMPOSITE_TYPE) + part
        return sa.cast(expression, COMPOSITE_TYPE)

    def composite_keyword_lookup(self, context: LookupContext, keyword: str) -> Optional[Select]:
        p = self._product_table(context.schema)
        composite = self.composite_keyword_expression(p, context)
        if composite is None:
            return None

        from_clause, price = self._with_price(p, p, context)
        prefix_rank = sa.case(
            (composite.like(build_prefix_pattern(keyword), escape=LIKE_ESCAPE), 0),
            else_=1,
        )
        if context.schema.has_column(self.settings.product_id_field):
            tie_break = self._product_key(p, context.schema)
        else:
            tie_break = p.c[self._product_name_column(context.schema)]

        return (
            sa.select(
                *self._product_projection(p, context, price),
                sa.cast(sa.null(), ID_TYPE).label("matched_unit_id"),
                sa.cast(sa.literal(keyword), BARCODE_TYPE).label("matched_barcode"),
            )
            .select_from(from_clause)
            .where(composite.like(build_contains_pattern(keyword), escape=LIKE_ESCAPE))
            .order_by(prefix_rank, tie_break)
            .limit(1)
        )

    # -- units --------------------------------------------------------------------

    @property
    def supports_units(self) -> bool:
        return bool(self.unit_table and self.barcode_table and self.price_table)

    def units_for_product(self, product_id: str, matched_barcode: Optional[str]) -> Optional[Select]:
        if not self.supports_units:
            return None

        u = self._unit_table("u")
        bc_raw = self._barcode_table("bcRaw")
        matched = self._barcode_table("m")

        price = sa.func.coalesce(
            self.preferred_price_subquery(u.c[XREF_PRODUCT_ID], u.c[UNIT_ID_COLUMN]), 0
        )
        barcode_list = (
            sa.select(
                sa.func.aggregate_strings(sa.cast(bc_raw.c[self.barcode_column], BARCODE_TYPE), ",")
            )
            .where(
                bc_raw.c[XREF_PRODUCT_ID] == u.c[XREF_PRODUCT_ID],
                bc_raw.c[XREF_UNIT_ID] == u.c[UNIT_ID_COLUMN],
            )
            .scalar_subquery()
        )
        if matched_barcode:
            is_matched = sa.case(
                (
                    sa.exists().where(
                        matched.c[XREF_PRODUCT_ID] == u.c[XREF_PRODUCT_ID],
                        matched.c[XREF_UNIT_ID] == u.c[UNIT_ID_COLUMN],
                        matched.c[self.barcode_column] == matched_barcode,
                    ),
                    1,
                ),
                else_=0,
            )
        else:
            is_matched = sa.literal_column("0")

        return sa.select(
            sa.cast(u.c[UNIT_ID_COLUMN], ID_TYPE).label("unit_id"),
            sa.cast(sa.func.coalesce(u.c[UNIT_NAME_COLUMN], ""), SHORT_TEXT_TYPE).label("unit_name"),
            sa.cast(sa.func.coalesce(u.c[UNIT_RATE_COLUMN], 0), SHORT_TEXT_TYPE).label("unit_rate"),
            sa.cast(price, PRICE_TYPE).label("price"),
            sa.func.coalesce(barcode_list, "").label("barcode_list"),
            is_matched.label("is_matched_unit"),
        ).where(u.c[XREF_PRODUCT_ID] == product_id)

    # -- fragment search ----------------------------------------------------------

    def _optional_target(
        self, p: FromClause, schema: SchemaSnapshot, field_name: str
    ) -> Optional[Tuple[ColumnElement, str]]:
        column = schema.column_name(field_name)
        if column is None:
            return None
        return sa.cast(p.c[column], BARCODE_TYPE), field_name

    def _descriptive_targets(
        self, p: FromClause, schema: SchemaSnapshot
    ) -> List[Tuple[ColumnElement, str]]:
        targets = []
        for field_name in (
            PRODUCT_SHORT_CODE_FIELD,
            PRODUCT_CODE_FIELD,
            self.settings.product_name_field,
        ):
            target = self._optional_target(p, schema, field_name)
            if target is not None:
                targets.append(target)
        return targets

    def search_targets(self, p: FromClause, context: LookupContext, bc: Optional[FromClause]) -> List[SearchTarget]:
        """Ordered search surfaces; list position is the field precedence."""
        schema = context.schema
        targets: List[SearchTarget] = []
        seen: set[str] = set()

        def add(expression: ColumnElement, matched_by: str, barcode: ColumnElement) -> None:
            key = matched_by.lower()
            if key in seen:
                return
            seen.add(key)
            targets.append(SearchTarget(expression, matched_by, barcode))

        if bc is not None:
            barcode = sa.cast(bc.c[self.barcode_column], BARCODE_TYPE)
            add(barcode, self.settings.barcode_column or BARCODE_TABLE_LABEL, barcode)
            for expression, matched_by in self._descriptive_targets(p, schema):
                add(expression, matched_by, barcode)
            return targets

        preferred = self.preferred_barcode_expression(p, context.barcode_fields)
        for field_name in context.barcode_fields:
            barcode = sa.cast(p.c[field_name], BARCODE_TYPE)
            add(barcode, field_name, barcode)
        for expression, matched_by in self._descriptive_targets(p, schema):
            add(expression, matched_by, preferred)
        return targets

    def fragment_search(self, context: LookupContext, keyword: str, limit: int) -> Optional[Select]:
        schema = context.schema
        p = self._product_table(schema)
        product_key = self._product_key(p, schema)

        if context.use_barcode_table and self.barcode_table:
            bc = self._barcode_table("bc")
            from_clause = bc.join(p, bc.c[XREF_PRODUCT_ID] == product_key)
            from_clause, price = self._with_price(from_clause, p, context, bc)
        elif context.barcode_fields:
            bc = None
            from_clause, price = self._with_price(p, p, context)
        else:
            return None

        targets = self.search_targets(p, context, bc)
        contains = build_contains_pattern(keyword)
        prefix = build_prefix_pattern(keyword)

        branches = []
        for index, target in enumerate(targets):
            conditions = [target.expression.like(contains, escape=LIKE_ESCAPE)]
            if bc is None:
                conditions.append(
                    sa.func.nullif(sa.func.ltrim(sa.func.rtrim(target.barcode)), "").isnot(None)
                )
            branches.append(
                sa.select(
                    *self._product_projection(p, context, price),
                    target.barcode.label("barcode"),
                    sa.cast(sa.literal(target.matched_by), SHORT_TEXT_TYPE).label("matched_by"),
                    sa.literal_column(str(int(index))).label("field_rank"),
                    sa.case(
                        (target.expression.like(prefix, escape=LIKE_ESCAPE), 0), else_=1
                    ).label("match_rank"),
                )
                .select_from(from_clause)
                .where(*conditions)
            )

        if not branches:
            return None

        source = branches[0] if len(branches) == 1 else sa.union_all(*branches)
        raw = source.subquery("raw")
        if schema.has_column(self.settings.product_id_field):
            partition = raw.c.product_id
        else:
            partition = raw.c.product_name
        ranked = sa.select(
            raw,
            sa.func.row_number()
            .over(
                partition_by=partition,
                order_by=(raw.c.match_rank, raw.c.field_rank, raw.c.barcode),
            )
            .label("dedup_rank"),
        ).subquery("ranked")

        return (
            sa.select(
                ranked.c.product_id,
                ranked.c.product_name,
                ranked.c.product_code,
                ranked.c.product_short_code,
                ranked.c.specification,
                ranked.c.price,
                ranked.c.barcode,
                ranked.c.matched_by,
            )
            .where(ranked.c.dedup_rank == 1)
            .order_by(ranked.c.match_rank, ranked.c.field_rank, ranked.c.barcode)
            .limit(limit)
        )
