"""Loading the requirement catalog from YAML."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from docbox.models import BoxType, DocType, ExpenseType

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "requirements.yaml"

_FLAG_CONDITIONS = {"has_vat", "has_wht"}


@dataclass(frozen=True)
class RequirementSpec:
    """A catalog row: one requirement and when it applies."""

    id: str
    label: str
    accepted_doc_types: frozenset[DocType]
    required: bool = True
    conditions: tuple[str, ...] = ()


@dataclass(frozen=True)
class RequirementCatalog:
    """Doc-type equivalence groups plus per box type requirement tables."""

    doc_type_groups: dict[str, frozenset[DocType]]
    requirements: dict[BoxType, tuple[RequirementSpec, ...]]

    def group(self, name: str) -> frozenset[DocType]:
        """Return the doc types in a named group (empty if unknown)."""
        return self.doc_type_groups.get(name, frozenset())


def _parse_doc_types(name: str, raw: Any, source: str) -> frozenset[DocType]:
    if not isinstance(raw, list):
        raise ValueError(f"{source}: doc_type_groups.{name} must be a list")
    doc_types: set[DocType] = set()
    for item in raw:
        doc_type = DocType.parse(item)
        if doc_type is None:
            raise ValueError(f"{source}: unknown doc type {item!r} in group {name}")
        doc_types.add(doc_type)
    return frozenset(doc_types)


def _validate_condition(condition: Any, source: str) -> str:
    if not isinstance(condition, str):
        raise ValueError(f"{source}: condition {condition!r} must be a string")
    if condition in _FLAG_CONDITIONS:
        return condition
    key, _, value = condition.partition(":")
    if key == "expense_type":
        try:
            ExpenseType(value)
        except ValueError as exc:
            raise ValueError(f"{source}: unknown expense type in {condition!r}") from exc
        return condition
    raise ValueError(f"{source}: unsupported condition {condition!r}")


def parse_requirement_catalog(data: dict[str, Any], source: str = "<catalog>") -> RequirementCatalog:
    """Build a catalog from already-parsed YAML data.

    Every BoxType must have a requirement table so that adding a box type
    without rules fails at load time instead of silently yielding nothing.
    """
    raw_groups = data.get("doc_type_groups") or {}
    if not isinstance(raw_groups, dict):
        raise ValueError(f"{source}: doc_type_groups must be a mapping")
    groups = {
        str(name): _parse_doc_types(str(name), raw, source) for name, raw in raw_groups.items()
    }

    raw_requirements = data.get("requirements") or {}
    if not isinstance(raw_requirements, dict):
        raise ValueError(f"{source}: requirements must be a mapping")

    tables: dict[BoxType, tuple[RequirementSpec, ...]] = {}
    for box_key, rows in raw_requirements.items():
        try:
            box_type = BoxType(str(box_key).upper())
        except ValueError as exc:
            raise ValueError(f"{source}: unknown box type {box_key!r}") from exc
        if not isinstance(rows, list):
            raise ValueError(f"{source}: requirements.{box_key} must be a list")

        specs: list[RequirementSpec] = []
        for idx, row in enumerate(rows):
            where = f"{source}: requirements.{box_key}[{idx}]"
            if not isinstance(row, dict) or "id" not in row:
                raise ValueError(f"{where} must be a mapping with an id")
            group_name = row.get("group", row["id"])
            if group_name not in groups:
                raise ValueError(f"{where} references unknown group {group_name!r}")
            conditions = row.get("when") or []
            if not isinstance(conditions, list):
                raise ValueError(f"{where}.when must be a list")
            specs.append(
                RequirementSpec(
                    id=str(row["id"]),
                    label=str(row.get("label", row["id"])),
                    accepted_doc_types=groups[group_name],
                    required=bool(row.get("required", True)),
                    conditions=tuple(_validate_condition(c, where) for c in conditions),
                )
            )
        tables[box_type] = tuple(specs)

    missing = [box_type.value for box_type in BoxType if box_type not in tables]
    if missing:
        raise ValueError(f"{source}: no requirement table for {', '.join(missing)}")

    return RequirementCatalog(doc_type_groups=groups, requirements=tables)


@lru_cache
def load_requirement_catalog(path: Path | None = None) -> RequirementCatalog:
    """Load and cache a requirement catalog.

    Args:
        path: YAML file to read. Defaults to the bundled catalog.

    Returns:
        Parsed, validated catalog.
    """
    catalog_path = path or DEFAULT_CATALOG_PATH
    raw = catalog_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{catalog_path.name}: catalog must be a mapping")
    return parse_requirement_catalog(data, source=catalog_path.name)
