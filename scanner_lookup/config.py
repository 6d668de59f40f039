from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    # Core
    app_name: str = Field(default="swcs-scanner-lookup")
    environment: str = Field(default="dev")  # dev|staging|prod
    log_json: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    # Observability
    sentry_dsn: str | None = Field(default=None)
    slow_query_threshold_ms: int = Field(default=300, ge=0)

    # Data
    database_url: str | None = Field(default=None)
    query_timeout_seconds: int = Field(default=15)
    schema_cache_minutes: int = Field(default=10)

    # Product table
    product_table: str = Field(default="dbo.Ptype")
    product_id_field: str = Field(default="ptypeid")
    product_name_field: str = Field(default="pfullname")
    specification_field: str = Field(default="Standard")
    barcode_fields: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["Standard", "Barcode"]
    )
    price_fields: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["RetailPrice", "Price1", "Price"]
    )

    # Optional cross-reference tables
    barcode_table: Optional[str] = Field(default=None)
    barcode_column: Optional[str] = Field(default=None)
    price_table: Optional[str] = Field(default=None)
    price_column: Optional[str] = Field(default=None)
    price_type_id: Optional[str] = Field(default=None)
    unit_table: Optional[str] = Field(default="dbo.xw_PtypeUnit")

    # Legacy barcode function
    legacy_barcode_function: str = Field(default="dbo.fn_strunitptype")
    enable_function_fallback: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="SWCS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("barcode_fields", "price_fields", mode="before")
    @classmethod
    def _csv_to_list(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator(
        "barcode_table",
        "barcode_column",
        "price_table",
        "price_column",
        "price_type_id",
        "unit_table",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @property
    def uses_barcode_table(self) -> bool:
        return bool(self.barcode_table and self.barcode_column)

    @property
    def uses_price_table(self) -> bool:
        return bool(self.price_table and self.price_column)


@lru_cache
def get_settings() -> Settings:
    return Settings()
