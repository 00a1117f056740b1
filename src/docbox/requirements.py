"""Requirement rules: which documents a box needs.

The rules are pure data (a RequirementCatalog) evaluated against a box's
type and tax configuration. Missing or contradictory configuration yields a
reduced requirement set, never an exception.
"""

from dataclasses import dataclass

import structlog

from docbox.config.catalog import RequirementCatalog, RequirementSpec, load_requirement_catalog
from docbox.config.settings import get_settings
from docbox.models import Box, BoxType, DocType, ExpenseType

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Requirement:
    """A document category a box must (or may) hold."""

    id: str
    label: str
    accepted_doc_types: frozenset[DocType]
    required: bool = True

    def accepts(self, doc_type: DocType) -> bool:
        return doc_type in self.accepted_doc_types


class RequirementRules:
    """Maps box configuration to the set of required document categories."""

    def __init__(self, catalog: RequirementCatalog | None = None):
        if catalog is None:
            catalog = load_requirement_catalog(get_settings().requirement_catalog_path)
        self._catalog = catalog

    @property
    def catalog(self) -> RequirementCatalog:
        return self._catalog

    def required_documents(
        self,
        box_type: BoxType | None,
        expense_type: ExpenseType | None = None,
        has_vat: bool = False,
        has_wht: bool = False,
    ) -> list[Requirement]:
        """Return the requirements that apply to this configuration.

        Args:
            box_type: EXPENSE or INCOME. None yields an empty list.
            expense_type: Expense evidence type, may be unset.
            has_vat: Whether the box carries VAT.
            has_wht: Whether withholding tax applies.

        Returns:
            Requirements in catalog order.
        """
        if box_type is None:
            logger.warning("configuration_gap", reason="box_type_missing")
            return []

        table = self._catalog.requirements.get(box_type)
        if table is None:
            logger.warning("configuration_gap", reason="no_requirement_table", box_type=box_type.value)
            return []

        flags = {"has_vat": has_vat, "has_wht": has_wht}
        return [
            Requirement(
                id=spec.id,
                label=spec.label,
                accepted_doc_types=spec.accepted_doc_types,
                required=spec.required,
            )
            for spec in table
            if _applies(spec, flags, expense_type)
        ]

    def for_box(self, box: Box) -> list[Requirement]:
        """Shortcut for ``required_documents`` using a box's own settings."""
        return self.required_documents(box.box_type, box.expense_type, box.has_vat, box.has_wht)


def _applies(
    spec: RequirementSpec,
    flags: dict[str, bool],
    expense_type: ExpenseType | None,
) -> bool:
    if not spec.conditions:
        return True
    for condition in spec.conditions:
        if condition in flags:
            if flags[condition]:
                return True
            continue
        _, _, wanted = condition.partition(":")
        if expense_type is not None and expense_type.value == wanted:
            return True
    return False


def required_documents(
    box_type: BoxType | None,
    expense_type: ExpenseType | None = None,
    has_vat: bool = False,
    has_wht: bool = False,
) -> list[Requirement]:
    """Evaluate the default catalog. See RequirementRules.required_documents."""
    return RequirementRules().required_documents(box_type, expense_type, has_vat, has_wht)
