from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from .config import Settings
from .errors import ConfigurationError
from .services.product_lookup.sql import split_table_name, validate_identifier

logger = logging.getLogger(__name__)

MAX_QUERY_TIMEOUT_SECONDS = 120


def _collect_missing(settings: Settings, pairs: Iterable[Tuple[str, str]]) -> list[str]:
    missing: list[str] = []
    for attr, label in pairs:
        value = getattr(settings, attr, None)
        if value in (None, "", [], {}):
            missing.append(label)
    return missing


def _check_identifier(failures: List[str], label: str, value: Optional[str], *, table: bool = False) -> None:
    if not value:
        return
    try:
        if table:
            split_table_name(value)
        else:
            validate_identifier(value)
    except ConfigurationError:
        failures.append(f"{label} is not a valid identifier: {value!r}")


def collect_failures(settings: Settings) -> list[str]:
    failures = [
        f"{label} is required"
        for label in _collect_missing(
            settings,
            [
                ("database_url", "SWCS_DATABASE_URL"),
                ("product_table", "SWCS_PRODUCT_TABLE"),
                ("product_name_field", "SWCS_PRODUCT_NAME_FIELD"),
            ],
        )
    ]

    if settings.barcode_table and not settings.barcode_column:
        failures.append("SWCS_BARCODE_COLUMN is required when SWCS_BARCODE_TABLE is set")
    if settings.price_table and not settings.price_column:
        failures.append("SWCS_PRICE_COLUMN is required when SWCS_PRICE_TABLE is set")
    if not settings.price_table and not settings.price_fields:
        failures.append("SWCS_PRICE_FIELDS needs at least one candidate when SWCS_PRICE_TABLE is not set")
    if (
        not settings.barcode_table
        and not settings.barcode_fields
        and not settings.enable_function_fallback
    ):
        failures.append(
            "SWCS_BARCODE_FIELDS needs at least one candidate when neither SWCS_BARCODE_TABLE "
            "nor the function fallback is enabled"
        )
    if settings.schema_cache_minutes < 0:
        failures.append("SWCS_SCHEMA_CACHE_MINUTES must not be negative")
    if settings.query_timeout_seconds <= 0:
        failures.append("SWCS_QUERY_TIMEOUT_SECONDS must be greater than 0")
    if settings.query_timeout_seconds > MAX_QUERY_TIMEOUT_SECONDS:
        failures.append(f"SWCS_QUERY_TIMEOUT_SECONDS must not exceed {MAX_QUERY_TIMEOUT_SECONDS}")

    _check_identifier(failures, "SWCS_PRODUCT_TABLE", settings.product_table, table=True)
    _check_identifier(failures, "SWCS_BARCODE_TABLE", settings.barcode_table, table=True)
    _check_identifier(failures, "SWCS_PRICE_TABLE", settings.price_table, table=True)
    _check_identifier(failures, "SWCS_UNIT_TABLE", settings.unit_table, table=True)
    _check_identifier(
        failures, "SWCS_LEGACY_BARCODE_FUNCTION", settings.legacy_barcode_function, table=True
    )
    for label, value in (
        ("SWCS_PRODUCT_ID_FIELD", settings.product_id_field),
        ("SWCS_PRODUCT_NAME_FIELD", settings.product_name_field),
        ("SWCS_SPECIFICATION_FIELD", settings.specification_field),
        ("SWCS_BARCODE_COLUMN", settings.barcode_column),
        ("SWCS_PRICE_COLUMN", settings.price_column),
    ):
        _check_identifier(failures, label, value)
    for value in settings.barcode_fields:
        _check_identifier(failures, "SWCS_BARCODE_FIELDS", value)
    for value in settings.price_fields:
        _check_identifier(failures, "SWCS_PRICE_FIELDS", value)
    return failures


def validate_settings(settings: Settings) -> None:
    """Fail fast when the deployment description cannot drive lookups."""
    environment = (settings.environment or "dev").lower()

    if environment == "dev":
        recommended = _collect_missing(settings, [("sentry_dsn", "SWCS_SENTRY_DSN")])
        if recommended:
            logger.warning(
                "Running in dev without recommended settings; some features may be disabled",
                extra={"missing": recommended},
            )

    failures = collect_failures(settings)
    if failures:
        raise ConfigurationError(
            f"Invalid configuration for environment '{environment}': {'; '.join(failures)}"
        )
