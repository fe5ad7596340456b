"""
Tests for the policy lifecycle manager and the payment simulator.
"""

import random
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.documents import CallableRenderer, DocumentIssuancePipeline
from src.lifecycle import (
    AlreadyTerminal,
    AuditAction,
    DocumentKind,
    DuplicatePolicy,
    InvalidInput,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    PolicyStatus,
    QuoteNotConvertible,
    QuoteStatus,
)
from src.policies import PaymentSimulator, PolicyLifecycleManager, add_years, is_valid_payment_method

from conftest import ADMIN, CLIENT, FIXED_NOW, failed, paid

TXN_PATTERN = re.compile(r"^TXN-\d+-[A-Z0-9]{9}$")


def always_failing(kind, data):
    raise RuntimeError("renderer offline")


# ============================================================================
# Test: Issuance
# ============================================================================


class TestIssue:
    """Quotes convert once, while PENDING and unexpired."""

    def test_paid_policy(self, policy, store, quote, notifications, audit_sink):
        assert policy.status == PolicyStatus.ACTIVE
        assert policy.payment_status == PaymentStatus.PAID
        assert policy.premium == Decimal("5250.00")
        assert policy.start_date == FIXED_NOW
        assert policy.end_date == datetime(2027, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert policy.quote_ref == quote.quote_id
        assert len(policy.document_refs) == 3

        assert store.get_quote(quote.quote_id).status == QuoteStatus.CONVERTED
        assert len(notifications.of_type(NotificationType.POLICY_CREATED)) == 1
        assert len(notifications.of_type(NotificationType.PAYMENT_SUCCESS)) == 1
        created = [e for e in audit_sink.entries if e.entity_type == "Policy"]
        assert [e.action for e in created] == [AuditAction.CREATE]

    def test_failed_payment_creates_unpaid_policy_without_documents(self, policies, quote, store, notifications):
        policy = policies.issue(quote.quote_id, failed(), CLIENT)

        assert policy.payment_status == PaymentStatus.FAILED
        assert policy.document_refs == []
        assert store.list_documents_by_policy(policy.policy_id) == []
        assert store.get_quote(quote.quote_id).status == QuoteStatus.CONVERTED
        assert notifications.of_type(NotificationType.PAYMENT_SUCCESS) == []

    def test_expired_quote(self, policies, quote, clock, store):
        clock.advance(days=8)
        with pytest.raises(QuoteNotConvertible):
            policies.issue(quote.quote_id, paid(), CLIENT)
        assert store.find_policy_by_quote(quote.quote_id) is None

    def test_quote_not_pending(self, policies, quotes, quote):
        quotes.expire_quote(quote.quote_id)
        with pytest.raises(QuoteNotConvertible) as exc_info:
            policies.issue(quote.quote_id, paid(), CLIENT)
        assert "EXPIRED" in exc_info.value.reason

    def test_duplicate_policy(self, policies, policy, quote):
        with pytest.raises(DuplicatePolicy) as exc_info:
            policies.issue(quote.quote_id, paid(), CLIENT)
        assert exc_info.value.policy_id == policy.policy_id

    def test_store_rejects_second_policy_for_quote(self, store, policy):
        clone = policy.model_copy(update={"policy_id": "POL-CLONE"})
        with pytest.raises(DuplicatePolicy):
            store.create_policy(clone)

    def test_issuance_failure_keeps_policy(self, store, registry, blob_store, notifier, audit, settings, clock, quote):
        pipeline = DocumentIssuancePipeline(
            store, registry, CallableRenderer(always_failing), blob_store, settings, clock
        )
        manager = PolicyLifecycleManager(store, pipeline, notifier, audit, settings, clock)

        policy = manager.issue(quote.quote_id, paid(), CLIENT)

        assert policy.status == PolicyStatus.ACTIVE
        assert policy.payment_status == PaymentStatus.PAID
        assert pipeline.missing_kinds(policy.policy_id) == [
            DocumentKind.ATTESTATION,
            DocumentKind.CONTRACT,
            DocumentKind.RECEIPT,
        ]

    def test_unexpected_pipeline_error_is_logged(self, policies, pipeline, quote, monkeypatch):
        def locked(policy, actor):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(pipeline, "issue", locked)
        policy = policies.issue(quote.quote_id, paid(), CLIENT)
        assert policy.status == PolicyStatus.ACTIVE


class TestSubscribe:
    """Subscribe charges the quote total, then issues."""

    def test_successful_payment(self, store, pipeline, notifier, audit, settings, clock, quote):
        payments = PaymentSimulator(success_rate=1.0, rng=random.Random(3), clock=clock)
        manager = PolicyLifecycleManager(store, pipeline, notifier, audit, settings, clock, payments)

        policy = manager.subscribe(quote.quote_id, CLIENT, PaymentMethod.MOBILE_MONEY)

        assert policy.payment_status == PaymentStatus.PAID
        assert policy.payment_method == PaymentMethod.MOBILE_MONEY
        assert TXN_PATTERN.match(policy.transaction_id)
        assert len(policy.document_refs) == 3

    def test_declined_payment(self, store, pipeline, notifier, audit, settings, clock, quote):
        payments = PaymentSimulator(success_rate=0.0, rng=random.Random(3), clock=clock)
        manager = PolicyLifecycleManager(store, pipeline, notifier, audit, settings, clock, payments)

        policy = manager.subscribe(quote.quote_id, CLIENT)

        assert policy.payment_status == PaymentStatus.FAILED
        assert policy.transaction_id is None

    def test_no_charge_for_expired_quote(self, store, pipeline, notifier, audit, settings, clock, quote):
        class NeverCalled(PaymentSimulator):
            def simulate(self, amount, method=PaymentMethod.CARD):
                raise AssertionError("payment attempted")

        manager = PolicyLifecycleManager(store, pipeline, notifier, audit, settings, clock, NeverCalled())
        clock.advance(days=30)
        with pytest.raises(QuoteNotConvertible):
            manager.subscribe(quote.quote_id, CLIENT)


# ============================================================================
# Test: Renewal
# ============================================================================


class TestRenew:
    """Renewal starts from the later of the current end date and now."""

    def test_renew_active_policy_extends_from_end_date(self, policies, policy, store, notifications):
        renewed = policies.renew(policy.policy_id, ADMIN)

        assert renewed.status == PolicyStatus.ACTIVE
        assert renewed.start_date == policy.end_date
        assert renewed.end_date == datetime(2028, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert renewed.payment_status == PaymentStatus.PENDING
        assert renewed.transaction_id is None
        assert len(notifications.of_type(NotificationType.POLICY_RENEWED)) == 1

        amendments = store.list_documents_by_policy(policy.policy_id, kinds=[DocumentKind.AMENDMENT])
        assert [d.number for d in amendments] == ["AM-2026-000001"]
        assert renewed.document_refs[-1] == amendments[0].document_id

    def test_renew_expired_policy_starts_now(self, policies, policy, clock):
        clock.now = policy.end_date + timedelta(days=15)
        assert [p.policy_id for p in policies.expire_overdue()] == [policy.policy_id]

        renewed = policies.renew(policy.policy_id, ADMIN)
        assert renewed.status == PolicyStatus.ACTIVE
        assert renewed.start_date == clock.now
        assert renewed.end_date == add_years(clock.now, 1)

    def test_renew_with_payment(self, policies, policy):
        renewed = policies.renew(policy.policy_id, ADMIN, paid(PaymentMethod.BANK_TRANSFER))
        assert renewed.payment_status == PaymentStatus.PAID
        assert renewed.payment_method == PaymentMethod.BANK_TRANSFER

    def test_renew_cancelled_policy(self, policies, policy):
        policies.cancel(policy.policy_id, ADMIN)
        with pytest.raises(AlreadyTerminal):
            policies.renew(policy.policy_id, ADMIN)

    def test_renewal_audited(self, policies, policy, audit_sink):
        policies.renew(policy.policy_id, ADMIN)
        update = [e for e in audit_sink.entries if e.action == AuditAction.UPDATE][-1]
        assert update.metadata["operation"] == "renew"
        assert update.before["end_date"] != update.after["end_date"]


# ============================================================================
# Test: Cancellation
# ============================================================================


class TestCancel:
    """Cancellation is terminal and cannot be repeated."""

    def test_cancel(self, policies, policy, store, notifications):
        cancelled = policies.cancel(policy.policy_id, ADMIN, "Vehicle sold")

        assert cancelled.status == PolicyStatus.CANCELLED
        assert cancelled.days_remaining(FIXED_NOW) == 0
        sent = notifications.of_type(NotificationType.POLICY_CANCELLED)
        assert len(sent) == 1
        assert "Vehicle sold" in sent[0].message
        notices = store.list_documents_by_policy(policy.policy_id, kinds=[DocumentKind.CANCELLATION])
        assert [d.number for d in notices] == ["CN-2026-000001"]

    def test_cancel_twice(self, policies, policy):
        policies.cancel(policy.policy_id, ADMIN)
        with pytest.raises(AlreadyTerminal):
            policies.cancel(policy.policy_id, ADMIN)

    def test_cancel_expired_policy(self, policies, policy, clock):
        clock.now = policy.end_date + timedelta(days=1)
        policies.expire_overdue()
        assert policies.cancel(policy.policy_id, ADMIN).status == PolicyStatus.CANCELLED

    def test_endorsement_failure_keeps_cancellation(self, store, registry, blob_store, notifier, audit, settings, clock, policy):
        pipeline = DocumentIssuancePipeline(
            store, registry, CallableRenderer(always_failing), blob_store, settings, clock
        )
        manager = PolicyLifecycleManager(store, pipeline, notifier, audit, settings, clock)
        assert manager.cancel(policy.policy_id, ADMIN).status == PolicyStatus.CANCELLED


# ============================================================================
# Test: Expiry & Dates
# ============================================================================


class TestExpireOverdue:
    """Only ACTIVE policies past their end date move, and only once."""

    def test_expire_is_idempotent(self, policies, policy, clock):
        clock.now = policy.end_date + timedelta(seconds=1)
        assert len(policies.expire_overdue()) == 1
        assert policies.expire_overdue() == []
        assert policies.get_policy(policy.policy_id).status == PolicyStatus.EXPIRED

    def test_not_yet_ended(self, policies, policy):
        assert policies.expire_overdue() == []


class TestAddYears:
    def test_regular_date(self):
        assert add_years(datetime(2026, 3, 10, tzinfo=timezone.utc), 1) == datetime(2027, 3, 10, tzinfo=timezone.utc)

    def test_leap_day_rolls_to_march_first(self):
        assert add_years(datetime(2028, 2, 29, 12, 0, tzinfo=timezone.utc), 1) == datetime(
            2029, 3, 1, 12, 0, tzinfo=timezone.utc
        )


# ============================================================================
# Test: Payment Simulator
# ============================================================================


class TestPaymentSimulator:
    """Injectable RNG makes outcomes reproducible."""

    def test_success(self, clock):
        result = PaymentSimulator(1.0, random.Random(0), clock).simulate(Decimal("5250.00"), PaymentMethod.CASH)
        assert result.success
        assert result.payment_status == PaymentStatus.PAID
        assert result.payment_date == FIXED_NOW
        assert result.transaction_id.startswith(f"TXN-{int(FIXED_NOW.timestamp() * 1000)}-")
        assert TXN_PATTERN.match(result.transaction_id)

    def test_failure(self):
        result = PaymentSimulator(0.0, random.Random(0)).simulate(Decimal("100"))
        assert not result.success
        assert result.payment_status == PaymentStatus.FAILED
        assert result.payment_date is None

    def test_same_seed_same_outcomes(self):
        runs = []
        for _ in range(2):
            simulator = PaymentSimulator(0.5, random.Random(42))
            runs.append([simulator.simulate(Decimal("1")).success for _ in range(20)])
        assert runs[0] == runs[1]
        assert True in runs[0] and False in runs[0]

    def test_method_names(self):
        assert is_valid_payment_method("MOBILE_MONEY")
        assert not is_valid_payment_method("CHEQUE")
        result = PaymentSimulator(1.0, random.Random(1)).simulate(Decimal("10"), "BANK_TRANSFER")
        assert result.method == PaymentMethod.BANK_TRANSFER
        with pytest.raises(InvalidInput):
            PaymentSimulator(1.0).simulate(Decimal("10"), "CHEQUE")

    def test_success_rate_bounds(self):
        with pytest.raises(ValueError):
            PaymentSimulator(1.5)
