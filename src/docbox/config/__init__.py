"""Configuration module for docbox."""

from docbox.config.catalog import (
    RequirementCatalog,
    RequirementSpec,
    load_requirement_catalog,
    parse_requirement_catalog,
)
from docbox.config.logging import configure_logging, get_logger
from docbox.config.settings import DocBoxSettings, get_settings

__all__ = [
    "DocBoxSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "RequirementCatalog",
    "RequirementSpec",
    "load_requirement_catalog",
    "parse_requirement_catalog",
]
