"""
Tests for the daily invariant sweep and its scheduler.

Covers:
- Expiry with exactly one notification per transitioned policy
- Pre-expiry notices in the [n-1, n] day window
- Stale claim detection (report only)
- Sub-task isolation and non-overlapping runs
- Next trigger computation in the configured timezone
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from src.lifecycle import ClaimStatus, Incident, NotificationType, PolicyStatus
from src.sweeper import DailyScheduler, InvariantSweeper

from conftest import ADMIN, CLIENT, FixedClock


@pytest.fixture
def sweeper(store, policies, notifier, settings, clock):
    return InvariantSweeper(store, policies, notifier, settings, clock)


def file_claim(claims, policy, clock):
    incident = Incident(date=clock.now, location="Sfax", type="THEFT", description="Side mirror stolen overnight")
    return claims.file_claim(policy.policy_id, CLIENT, incident)


# ============================================================================
# Test: Expiry
# ============================================================================


class TestExpirySweep:
    """Policies past their end date expire once and notify once."""

    def test_policy_ended_yesterday(self, sweeper, policy, store, clock, notifications):
        clock.now = policy.end_date + timedelta(days=1)

        report = sweeper.run_daily_sweep()

        assert store.get_policy(policy.policy_id).status == PolicyStatus.EXPIRED
        assert report.expired == 1
        assert report.expiry_notifications == 1
        expired = notifications.of_type(NotificationType.POLICY_EXPIRED)
        assert [n.recipient_id for n in expired] == [CLIENT.id]

        # Second run: nothing left to expire, nothing sent
        again = sweeper.run_daily_sweep()
        assert again.expired == 0
        assert len(notifications.of_type(NotificationType.POLICY_EXPIRED)) == 1

    def test_active_policy_untouched(self, sweeper, policy, store):
        report = sweeper.run_daily_sweep()
        assert report.expired == 0
        assert store.get_policy(policy.policy_id).status == PolicyStatus.ACTIVE

    def test_late_expiry_is_flagged(self, sweeper, policy, clock, notifications):
        clock.now = policy.end_date + timedelta(days=3)
        report = sweeper.run_daily_sweep()
        assert report.expired_late == 1
        assert len(notifications.of_type(NotificationType.POLICY_EXPIRED)) == 1

    def test_cancelled_policy_not_expired(self, sweeper, policies, policy, store, clock):
        policies.cancel(policy.policy_id, ADMIN)
        clock.now = policy.end_date + timedelta(days=1)
        assert sweeper.run_daily_sweep().expired == 0
        assert store.get_policy(policy.policy_id).status == PolicyStatus.CANCELLED


# ============================================================================
# Test: Pre-expiry Notices
# ============================================================================


class TestExpiringNotices:
    """ACTIVE policies ending in [now+29d, now+30d] get one notice per run."""

    def test_policy_in_window(self, sweeper, policy, clock, notifications):
        clock.now = policy.end_date - timedelta(days=29, hours=12)
        report = sweeper.run_daily_sweep()

        assert report.expiring_notified == 1
        sent = notifications.of_type(NotificationType.POLICY_EXPIRING)
        assert len(sent) == 1
        assert "30 days" in sent[0].message

    def test_window_bounds(self, sweeper, policy, clock, notifications):
        clock.now = policy.end_date - timedelta(days=31)
        sweeper.run_daily_sweep()
        clock.now = policy.end_date - timedelta(days=28)
        sweeper.run_daily_sweep()
        assert notifications.of_type(NotificationType.POLICY_EXPIRING) == []

    def test_repeated_runs_repeat_the_notice(self, sweeper, policy, clock, notifications):
        clock.now = policy.end_date - timedelta(days=29, hours=12)
        sweeper.run_daily_sweep()
        sweeper.run_daily_sweep()
        assert len(notifications.of_type(NotificationType.POLICY_EXPIRING)) == 2


# ============================================================================
# Test: Stale Claims
# ============================================================================


class TestStaleClaims:
    """Open claims untouched for 30 days are reported, never changed."""

    def test_stale_claim_reported(self, sweeper, claims, policy, clock, store):
        claim = file_claim(claims, policy, clock)
        clock.advance(days=31)

        report = sweeper.run_daily_sweep()

        assert [c["claim_id"] for c in report.stale_claims] == [claim.claim_id]
        assert report.stale_claims[0]["status"] == "RECEIVED"
        assert store.get_claim(claim.claim_id).status == ClaimStatus.RECEIVED

    def test_recent_activity_is_not_stale(self, sweeper, claims, policy, clock):
        claim = file_claim(claims, policy, clock)
        clock.advance(days=20)
        claims.add_message(claim.claim_id, ADMIN, "Still waiting for the police report.")
        clock.advance(days=20)
        assert sweeper.run_daily_sweep().stale_claims == []

    def test_closed_claims_ignored(self, sweeper, claims, policy, clock):
        claim = file_claim(claims, policy, clock)
        claims.transition(claim.claim_id, ClaimStatus.REJECTED, ADMIN, "Not covered")
        clock.advance(days=60)
        assert sweeper.run_daily_sweep().stale_claims == []


# ============================================================================
# Test: Isolation
# ============================================================================


class TestSweepIsolation:
    """A failing sub-task does not stop the others."""

    def test_failure_is_isolated(self, sweeper, store, policy, clock, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("index corrupted")

        monkeypatch.setattr(store, "list_policies_ending_between", broken)
        clock.now = policy.end_date + timedelta(days=1)

        report = sweeper.run_daily_sweep()

        assert not report.ok
        assert set(report.errors) == {"notify_expiring_policies"}
        assert report.expired == 1

    def test_overlapping_run_is_skipped(self, sweeper, policies, monkeypatch):
        entered = threading.Event()
        release = threading.Event()
        original = policies.expire_overdue

        def slow_expire(now=None):
            entered.set()
            release.wait(5)
            return original(now)

        monkeypatch.setattr(policies, "expire_overdue", slow_expire)
        results = []
        worker = threading.Thread(target=lambda: results.append(sweeper.run_daily_sweep()))
        worker.start()
        assert entered.wait(5)

        skipped = sweeper.run_daily_sweep()
        release.set()
        worker.join(5)

        assert skipped.skipped
        assert not results[0].skipped

    def test_report_to_dict(self, sweeper):
        data = sweeper.run_daily_sweep().to_dict()
        assert set(data) >= {"expired", "expiring_notified", "stale_claims", "errors", "duration_seconds"}
        assert data["skipped"] is False


# ============================================================================
# Test: Scheduler
# ============================================================================


class TestDailyScheduler:
    """Trigger at a fixed local time in Africa/Tunis (UTC+1)."""

    def test_next_run_later_today(self):
        scheduler = DailyScheduler(lambda: None, hour=2, minute=0, tz="Africa/Tunis")
        now = datetime(2026, 3, 10, 0, 30, tzinfo=timezone.utc)
        assert scheduler.next_run_after(now) == datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc)

    def test_next_run_tomorrow_once_passed(self):
        scheduler = DailyScheduler(lambda: None, hour=2, minute=0, tz="Africa/Tunis")
        now = datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc)
        assert scheduler.next_run_after(now) == datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)

    def test_failed_run_keeps_scheduler_alive(self):
        fired = threading.Event()

        def callback():
            fired.set()
            raise RuntimeError("sweep crashed")

        clock = FixedClock(datetime(2026, 3, 10, 0, 59, 59, 950000, tzinfo=timezone.utc))
        scheduler = DailyScheduler(callback, hour=2, minute=0, tz="Africa/Tunis", clock=clock)
        scheduler.start()
        try:
            assert fired.wait(5)
            time.sleep(0.1)
            assert scheduler.running
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.running

    def test_lagging_clock_fires_trigger_once(self):
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            fired.set()

        # The clock never reaches the trigger, as if the wall clock lagged the timed wait
        clock = FixedClock(datetime(2026, 3, 10, 0, 59, 59, 950000, tzinfo=timezone.utc))
        scheduler = DailyScheduler(callback, hour=2, minute=0, tz="Africa/Tunis", clock=clock)
        scheduler.start()
        try:
            assert fired.wait(5)
            time.sleep(0.3)
        finally:
            scheduler.stop(timeout=5)
        assert len(calls) == 1
