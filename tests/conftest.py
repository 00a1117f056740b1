"""Pytest configuration and fixtures."""

import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("DOCBOX_LOG_LEVEL", "WARNING")
os.environ.setdefault("DOCBOX_EVENT_BUFFER_SIZE", "50")

from docbox.config.logging import configure_logging  # noqa: E402
from docbox.config.settings import get_settings  # noqa: E402
from docbox.events.publisher import EventPublisher, reset_publisher  # noqa: E402
from docbox.models import (  # noqa: E402
    Box,
    BoxStatus,
    BoxType,
    DocType,
    Document,
    DocumentFile,
    ExpenseType,
)
from docbox.payments import InMemoryPaymentStore  # noqa: E402


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging():
    """Route log output to stderr at WARNING for the whole run."""
    configure_logging()


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Every test sees settings built from the current environment."""
    get_settings.cache_clear()
    reset_publisher()
    yield
    get_settings.cache_clear()
    reset_publisher()


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher():
    return EventPublisher(buffer_size=50)


def make_document(doc_type: DocType, file_id: str | None = None, **kwargs) -> Document:
    """Document with one attached file."""
    file_id = file_id or f"file-{doc_type.value.lower()}"
    return Document(
        doc_type=doc_type,
        files=[DocumentFile(file_id=file_id, name=f"{file_id}.pdf", mime_type="application/pdf")],
        **kwargs,
    )


@pytest.fixture
def standard_box():
    """STANDARD expense with VAT, no WHT, total 1070."""
    return Box(
        box_type=BoxType.EXPENSE,
        box_id="box-standard",
        box_number="EXP-2025-0001",
        expense_type=ExpenseType.STANDARD,
        box_date=date(2025, 3, 1),
        has_vat=True,
        total_amount=Decimal("1070.00"),
        vat_amount=Decimal("70.00"),
        status=BoxStatus.PENDING,
        contact_id="contact-1",
        contact_name="Siam Office Supply Co., Ltd.",
        contact_tax_id="0105555012345",
    )


@pytest.fixture
def wht_box():
    """Services expense with 3% WHT."""
    return Box(
        box_type=BoxType.EXPENSE,
        box_id="box-wht",
        box_number="EXP-2025-0002",
        expense_type=ExpenseType.STANDARD,
        box_date=date(2025, 3, 2),
        has_vat=True,
        has_wht=True,
        wht_rate=Decimal("3"),
        total_amount=Decimal("10700.00"),
        vat_amount=Decimal("700.00"),
        wht_amount=Decimal("300.00"),
        status=BoxStatus.PENDING,
        contact_name="Bangkok Consulting",
    )


@pytest.fixture
def income_box():
    return Box(
        box_type=BoxType.INCOME,
        box_id="box-income",
        box_number="INC-2025-0001",
        box_date=date(2025, 3, 3),
        total_amount=Decimal("5000.00"),
        status=BoxStatus.PENDING,
        contact_name="Chiang Mai Traders",
    )


@pytest.fixture
def store(standard_box, wht_box, income_box):
    return InMemoryPaymentStore([standard_box, wht_box, income_box])
