"""
Daily invariant sweep.

Three independent sub-tasks, run in order but isolated from one another:
- Expire ACTIVE policies whose end date has passed (and notify their owners)
- Send "expiring soon" notices for policies ending in the notice window
- Report claims that have sat in a non-terminal status for too long

A failure in one sub-task is logged and recorded on the report; the others
still run. Runs never overlap: a sweep started while another is in progress
returns immediately with ``skipped=True``.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..claims.workflow import TERMINAL_STATUSES
from ..lifecycle.schema import ClaimStatus, PolicyStatus, utc_now
from ..notifications.notifier import Notifier
from ..policies.lifecycle import PolicyLifecycleManager
from ..storage.lifecycle_store import LifecycleStore
from ..utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

OPEN_CLAIM_STATUSES = tuple(s for s in ClaimStatus if s not in TERMINAL_STATUSES)


@dataclass
class SweepReport:
    """Outcome of one sweep run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False

    # Expiry
    expired: int = 0
    expired_late: int = 0
    expiry_notifications: int = 0

    # Pre-expiry notices
    expiring_notified: int = 0

    # Stale claims
    stale_claims: List[Dict[str, Any]] = field(default_factory=list)

    duration_seconds: float = 0.0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "expired": self.expired,
            "expired_late": self.expired_late,
            "expiry_notifications": self.expiry_notifications,
            "expiring_notified": self.expiring_notified,
            "stale_claims": self.stale_claims,
            "duration_seconds": round(self.duration_seconds, 3),
            "errors": self.errors,
        }


class InvariantSweeper:
    """
    Entry point for the scheduled sweep. ``run_daily_sweep`` is idempotent and
    may also be called manually.
    """

    def __init__(
        self,
        store: LifecycleStore,
        policies: PolicyLifecycleManager,
        notifier: Notifier,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.policies = policies
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self._run_lock = threading.Lock()

    def run_daily_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.clock()
        report = SweepReport(started_at=now)

        if not self._run_lock.acquire(blocking=False):
            logger.warning("Sweep already running, skipping this trigger")
            report.skipped = True
            report.finished_at = now
            return report

        started = time.monotonic()
        try:
            logger.info(f"=== Daily sweep started ({now.isoformat()}) ===")
            for name, task in (
                ("expire_policies", self.expire_policies),
                ("notify_expiring_policies", self.notify_expiring_policies),
                ("detect_stale_claims", self.detect_stale_claims),
            ):
                try:
                    task(now, report)
                except Exception as e:
                    logger.exception(f"Sweep sub-task {name} failed: {e}")
                    report.errors[name] = str(e)
        finally:
            self._run_lock.release()

        report.duration_seconds = time.monotonic() - started
        report.finished_at = self.clock()
        logger.info(
            f"=== Daily sweep finished in {report.duration_seconds:.2f}s: "
            f"{report.expired} expired, {report.expiring_notified} notified, "
            f"{len(report.stale_claims)} stale ==="
        )
        return report

    def expire_policies(self, now: datetime, report: SweepReport) -> int:
        """
        Expire overdue policies and notify each owner once.

        Only policies transitioned by this run are notified, so a second run
        over the same data sends nothing.
        """
        expired = self.policies.expire_overdue(now)
        fresh_after = now - timedelta(hours=self.settings.freshly_expired_hours)

        for policy in expired:
            if policy.end_date < fresh_after:
                report.expired_late += 1
                logger.warning(
                    f"Policy {policy.policy_id} ended {policy.end_date:%Y-%m-%d %H:%M} "
                    f"and was only expired now; a previous sweep was missed"
                )
            if self.notifier.policy_expired(policy):
                report.expiry_notifications += 1

        report.expired = len(expired)
        if expired:
            logger.info(f"{len(expired)} policy(ies) marked EXPIRED")
        return len(expired)

    def notify_expiring_policies(self, now: datetime, report: SweepReport) -> int:
        """Notice for every ACTIVE policy ending within [now + n-1 days, now + n days]."""
        days = self.settings.expiring_notice_days
        window_start = now + timedelta(days=days - 1)
        window_end = now + timedelta(days=days)

        expiring = self.store.list_policies_ending_between(window_start, window_end, PolicyStatus.ACTIVE)
        logger.info(f"{len(expiring)} policy(ies) expiring in {days} days")

        for policy in expiring:
            if self.notifier.policy_expiring(policy, now):
                report.expiring_notified += 1
        return len(expiring)

    def detect_stale_claims(self, now: datetime, report: SweepReport) -> int:
        """Collect open claims not updated for ``stale_claim_days``. Nothing is changed."""
        threshold = now - timedelta(days=self.settings.stale_claim_days)
        stale = self.store.list_claims_by_status_and_updated_before(OPEN_CLAIM_STATUSES, threshold)

        report.stale_claims = [
            {
                "claim_id": claim.claim_id,
                "status": claim.status.value,
                "owner": claim.owner,
                "expert_ref": claim.expert_ref,
                "updated_at": claim.updated_at.isoformat(),
            }
            for claim in stale
        ]
        if stale:
            logger.warning(
                f"{len(stale)} stale claim(s): "
                + ", ".join(f"{c.claim_id} ({c.status.value})" for c in stale)
            )
        return len(stale)
