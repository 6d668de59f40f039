from __future__ import annotations

import pytest
import sqlalchemy as sa

from scanner_lookup.config import Settings
from scanner_lookup.errors import ConfigurationError
from scanner_lookup.services.product_lookup.context import build_lookup_context
from scanner_lookup.services.product_lookup.models import SchemaSnapshot
from scanner_lookup.services.product_lookup.sql import (
    ProductQueryBuilder,
    build_contains_pattern,
    build_prefix_pattern,
    escape_like_value,
    is_unit_scoped_price_table,
    split_table_name,
    validate_identifier,
)

PRODUCT_COLUMNS = ["ptypeid", "pfullname", "pusercode", "pnamepy", "Standard", "Barcode", "RetailPrice"]


def _settings(**overrides) -> Settings:
    values = {"database_url": "sqlite+aiosqlite://", "product_table": "Ptype"}
    values.update(overrides)
    return Settings(**values)


def _compiled(stmt) -> str:
    return str(stmt.compile(compile_kwargs={"literal_binds": False}))


def test_validate_identifier_accepts_plain_names():
    assert validate_identifier("RetailPrice") == "RetailPrice"
    assert validate_identifier("_x1") == "_x1"


@pytest.mark.parametrize("name", ["", "1abc", "price;drop", "a b", "p.price", None])
def test_validate_identifier_rejects_unsafe_names(name):
    with pytest.raises(ConfigurationError):
        validate_identifier(name)


def test_split_table_name_handles_schema_prefix():
    assert split_table_name("dbo.Ptype") == ("dbo", "Ptype")
    assert split_table_name("Ptype") == (None, "Ptype")


@pytest.mark.parametrize("name", ["a.b.c", "dbo.[Ptype]", "", "dbo.1x"])
def test_split_table_name_rejects_invalid_names(name):
    with pytest.raises(ConfigurationError):
        split_table_name(name)


def test_unit_scoped_price_table_detection():
    assert is_unit_scoped_price_table("xw_P_PtypePrice")
    assert is_unit_scoped_price_table("[dbo].[xw_P_PtypePrice]")
    assert not is_unit_scoped_price_table("dbo.PriceList")
    assert not is_unit_scoped_price_table(None)


def test_like_escaping_covers_wildcards():
    assert escape_like_value("50%_off\\[x]") == "50\\%\\_off\\\\\\[x]"
    assert build_contains_pattern("a%") == "%a\\%%"
    assert build_prefix_pattern("ab") == "ab%"


def test_builder_rejects_invalid_configured_field():
    with pytest.raises(ConfigurationError):
        ProductQueryBuilder(_settings(barcode_fields=["Barcode", "bad-name"]))


def test_field_lookup_binds_scanned_value():
    settings = _settings()
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(SchemaSnapshot.build(PRODUCT_COLUMNS, False), settings)

    stmt = builder.field_lookup(context, "Barcode", "690'; DROP TABLE Ptype;--")
    sql = _compiled(stmt)

    assert "DROP TABLE" not in sql
    assert "RetailPrice" in sql


def test_missing_product_code_columns_project_empty_strings():
    settings = _settings()
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(
        SchemaSnapshot.build(["ptypeid", "pfullname", "Barcode", "RetailPrice"], False), settings
    )

    stmt = builder.field_lookup(context, "Barcode", "123")

    assert [column.name for column in stmt.selected_columns] == [
        "product_id",
        "product_name",
        "product_code",
        "product_short_code",
        "specification",
        "price",
        "matched_unit_id",
        "matched_barcode",
    ]
    assert "pusercode" not in _compiled(stmt)


def test_price_table_join_replaces_product_price_field():
    settings = _settings(price_table="dbo.PriceList", price_column="SalePrice")
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(SchemaSnapshot.build(["ptypeid", "pfullname", "Barcode"], False), settings)

    sql = _compiled(builder.field_lookup(context, "Barcode", "123"))

    assert "SalePrice" in sql
    assert "JOIN" in sql
    assert context.price_field is None


def test_composite_keyword_skips_function_when_unusable():
    settings = _settings()
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(SchemaSnapshot.build(PRODUCT_COLUMNS, False), settings)

    sql = _compiled(builder.composite_keyword_lookup(context, "12345678"))

    assert "fn_strunitptype" not in sql
    assert "ESCAPE" in sql


def test_composite_keyword_includes_function_when_available():
    settings = _settings()
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(SchemaSnapshot.build(PRODUCT_COLUMNS, True), settings)

    sql = _compiled(builder.composite_keyword_lookup(context, "12345678"))

    assert "fn_strunitptype" in sql


def test_composite_keyword_includes_function_even_when_fallback_disabled():
    settings = _settings(enable_function_fallback=False)
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(SchemaSnapshot.build(PRODUCT_COLUMNS, True), settings)

    sql = _compiled(builder.composite_keyword_lookup(context, "12345678"))

    assert context.can_use_function_fallback is False
    assert "fn_strunitptype" in sql


def test_composite_keyword_without_descriptive_columns_is_skipped():
    settings = _settings(price_fields=["Price"])
    builder = ProductQueryBuilder(settings)
    context = build_lookup_context(SchemaSnapshot.build(["Id", "Name", "Price"], False), settings)

    assert builder.composite_keyword_lookup(context, "12345678") is None


def test_units_need_barcode_price_and_unit_tables():
    assert ProductQueryBuilder(_settings()).units_for_product("P1", None) is None

    builder = ProductQueryBuilder(
        _settings(
            barcode_table="xw_PtypeBarcode",
            barcode_column="Barcode",
            price_table="xw_P_PtypePrice",
            price_column="RetailPrice",
            unit_table="xw_PtypeUnit",
        )
    )
    assert builder.supports_units
    assert builder.units_for_product("P1", "690") is not None


def test_cross_reference_tables_must_be_configured():
    builder = ProductQueryBuilder(_settings(unit_table=""))
    context = build_lookup_context(SchemaSnapshot.build(PRODUCT_COLUMNS, False), _settings())

    with pytest.raises(ConfigurationError, match="price_table"):
        builder.preferred_price_subquery(sa.literal("P1"))
    with pytest.raises(ConfigurationError, match="barcode_table"):
        builder.barcode_table_lookup(context, "690")
