"""Configuration settings for the document box core."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DocBoxSettings(BaseSettings):
    """Flat settings read from ``DOCBOX_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DOCBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log output format"
    )

    # Field aggregation
    amount_tolerance: Decimal = Field(
        default=Decimal("0.5"),
        description="Two extracted amounts closer than this are the same value",
    )

    # Box matching
    match_threshold: int = Field(
        default=50, description="Minimum score for an add-to-existing suggestion"
    )
    match_amount_tolerance: Decimal = Field(
        default=Decimal("0.5"), description="Amount tolerance when matching boxes"
    )
    match_date_window_days: int = Field(
        default=7, description="Dates this close still count as near"
    )

    # Duplicate detection
    duplicate_amount_tolerance_pct: Decimal = Field(
        default=Decimal("0.01"), description="Relative amount tolerance for duplicates"
    )
    duplicate_threshold: int = Field(default=50, description="Duplicate similarity cutoff")

    # Validation
    standard_vat_rate: Decimal = Field(default=Decimal("7"), description="VAT rate in percent")
    vat_rate_tolerance: Decimal = Field(
        default=Decimal("0.5"), description="Allowed drift from the standard VAT rate"
    )
    validation_amount_tolerance: Decimal = Field(
        default=Decimal("1"), description="Allowed slip vs. total difference"
    )

    # Requirement catalog
    requirement_catalog_path: Path | None = Field(
        default=None, description="Alternative requirement catalog YAML file"
    )

    # Events
    event_buffer_size: int = Field(default=100, description="Recent events kept in memory")


@lru_cache
def get_settings() -> DocBoxSettings:
    """Get cached settings instance."""
    return DocBoxSettings()
