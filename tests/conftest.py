"""
Shared fixtures: a temporary SQLite store, a controllable clock, a seeded
catalogue and the services wired with recording sinks.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.claims import ClaimWorkflow
from src.documents import CallableRenderer, DocumentIssuancePipeline
from src.lifecycle import (
    Actor,
    AddOn,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
    Product,
    Role,
    Tariff,
    Vehicle,
)
from src.notifications import AuditTrail, Notifier, RecordingAuditSink, RecordingNotificationSink
from src.numbering import SequenceRegistry
from src.policies import PolicyLifecycleManager
from src.pricing import QuoteService
from src.storage import LifecycleStore, LocalBlobStore
from src.utils.config import Settings

# Setup logging for tests
logging.basicConfig(level=logging.INFO)

FIXED_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

CLIENT = Actor(id="client-1", role=Role.CLIENT)
ADMIN = Actor(id="admin-1", role=Role.ADMIN)
EXPERT = Actor(id="expert-1", role=Role.EXPERT)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def fake_pdf(kind, data) -> bytes:
    return f"%PDF-fake {kind.value} {data['number']}".encode()


def paid(method: PaymentMethod = PaymentMethod.CARD) -> PaymentResult:
    return PaymentResult(
        success=True,
        payment_status=PaymentStatus.PAID,
        method=method,
        payment_date=FIXED_NOW,
        transaction_id="TXN-1773133200000-ABCDEFGH1",
    )


def failed(method: PaymentMethod = PaymentMethod.CARD) -> PaymentResult:
    return PaymentResult(success=False, payment_status=PaymentStatus.FAILED, method=method)


# ============================================================================
# Infrastructure
# ============================================================================


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=tmp_path / "lifecycle.db", documents_dir=tmp_path / "documents")


@pytest.fixture
def store(settings):
    return LifecycleStore(settings.db_path)


@pytest.fixture
def blob_store(settings):
    return LocalBlobStore(settings.documents_dir)


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def notifier(notifications):
    return Notifier(notifications)


@pytest.fixture
def audit(audit_sink, clock):
    return AuditTrail(audit_sink, clock)


# ============================================================================
# Catalogue
# ============================================================================


@pytest.fixture
def vehicle(store):
    return store.create_vehicle(
        Vehicle(
            owner=CLIENT.id,
            plate_number="123 TU 4567",
            brand="Peugeot",
            model="208",
            year=2021,
            category="TOURISME",
            market_value=Decimal("10000"),
        )
    )


@pytest.fixture
def product(store):
    return store.save_product(
        Product(
            code="TIERS",
            name="Third party",
            tariff=Tariff(base_rate=Decimal("50"), vehicle_value_rate=Decimal("2.5")),
            add_ons=[
                AddOn(code="ASSIST", label="Roadside assistance", price=Decimal("1500")),
                AddOn(code="GLASS", label="Glass breakage", price=Decimal("2000")),
            ],
        )
    )


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def quotes(store, settings, clock):
    return QuoteService(store, settings, clock)


@pytest.fixture
def registry(store, clock):
    return SequenceRegistry(store, clock)


@pytest.fixture
def pipeline(store, registry, blob_store, settings, clock):
    return DocumentIssuancePipeline(store, registry, CallableRenderer(fake_pdf), blob_store, settings, clock)


@pytest.fixture
def policies(store, pipeline, notifier, audit, settings, clock):
    return PolicyLifecycleManager(store, pipeline, notifier, audit, settings, clock)


@pytest.fixture
def claims(store, notifier, audit, clock):
    return ClaimWorkflow(store, notifier, audit, clock)


@pytest.fixture
def quote(quotes, vehicle, product):
    return quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id)


@pytest.fixture
def policy(policies, quote):
    """A paid, active policy with its three documents."""
    return policies.issue(quote.quote_id, paid(), CLIENT)
