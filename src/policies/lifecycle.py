"""
Policy lifecycle manager.

State machine:
    ACTIVE <-> EXPIRED          (expiry by the daily sweep, renewal back to ACTIVE)
    ACTIVE/EXPIRED -> CANCELLED (terminal)

Policies are issued from a PENDING, unexpired quote. Documents are issued only
for paid policies; an issuance failure is logged and never undoes the policy.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from ..documents.issuance import DocumentIssuancePipeline
from ..lifecycle.errors import (
    AlreadyTerminal,
    ConcurrentModification,
    DuplicatePolicy,
    NotFound,
    QuoteNotConvertible,
)
from ..lifecycle.schema import (
    SYSTEM_ACTOR,
    Actor,
    DocumentKind,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
    Policy,
    PolicyStatus,
    Quote,
    QuoteStatus,
    utc_now,
)
from ..notifications.audit import AuditTrail
from ..notifications.notifier import Notifier
from ..storage.lifecycle_store import LifecycleStore
from ..utils.config import Settings, get_settings
from .payment import PaymentSimulator

logger = logging.getLogger(__name__)


def add_years(value: datetime, years: int) -> datetime:
    """Same calendar date ``years`` later. Feb 29 rolls over to Mar 1."""
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, month=3, day=1)


def _window(policy: Policy) -> Dict[str, Any]:
    return {
        "status": policy.status.value,
        "start_date": policy.start_date.isoformat(),
        "end_date": policy.end_date.isoformat(),
        "payment_status": policy.payment_status.value,
    }


class PolicyLifecycleManager:
    """Issue, renew, cancel and expire policies."""

    def __init__(
        self,
        store: LifecycleStore,
        pipeline: DocumentIssuancePipeline,
        notifier: Notifier,
        audit: AuditTrail,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        payments: Optional[PaymentSimulator] = None,
    ):
        self.store = store
        self.pipeline = pipeline
        self.notifier = notifier
        self.audit = audit
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.payments = payments or PaymentSimulator(self.settings.payment_success_rate, clock=self.clock)

    def get_policy(self, policy_id: str) -> Policy:
        policy = self.store.get_policy(policy_id)
        if policy is None:
            raise NotFound("Policy", policy_id)
        return policy

    def list_policies(self, owner: str, status: Optional[PolicyStatus] = None) -> List[Policy]:
        return self.store.list_policies_by_owner(owner, status)

    # =========================================================================
    # Issuance
    # =========================================================================

    def issue(self, quote_id: str, payment: PaymentResult, actor: Actor) -> Policy:
        """
        Convert a quote into a policy.

        The policy carries the payment status from ``payment`` whatever it is;
        the document set is issued only when that status is PAID.

        Raises:
            NotFound: unknown quote
            QuoteNotConvertible: quote not PENDING, or past its expiry date
            DuplicatePolicy: a policy already references the quote
        """
        quote = self._get_quote(quote_id)
        now = self.clock()
        self._check_convertible(quote, now)

        policy = Policy(
            owner=quote.owner,
            vehicle_ref=quote.vehicle_ref,
            product_ref=quote.product_ref,
            quote_ref=quote.quote_id,
            premium=quote.breakdown.total,
            status=PolicyStatus.ACTIVE,
            payment_status=payment.payment_status,
            payment_method=payment.method,
            payment_date=payment.payment_date,
            transaction_id=payment.transaction_id,
            start_date=now,
            end_date=add_years(now, self.settings.policy_term_years),
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        # The unique quote reference rejects a concurrent second conversion
        self.store.create_policy(policy)

        if not self.store.compare_and_set_quote_status(quote_id, QuoteStatus.PENDING, QuoteStatus.CONVERTED, now):
            logger.warning(f"Quote {quote_id} changed status while policy {policy.policy_id} was issued")

        logger.info(
            f"Policy {policy.policy_id} issued from quote {quote_id} "
            f"(premium {policy.premium} {quote.currency}, payment {policy.payment_status.value})"
        )
        self.audit.log_create(actor, "Policy", policy.policy_id, policy.model_dump(mode="json"), quote_ref=quote_id)

        product = self.store.get_product(policy.product_ref)
        self.notifier.policy_created(policy, product.name if product else "auto")

        if policy.payment_status == PaymentStatus.PAID:
            self.notifier.payment_success(policy)
            self._issue_documents(policy, actor)

        return self.get_policy(policy.policy_id)

    def subscribe(
        self,
        quote_id: str,
        actor: Actor,
        method: Union[PaymentMethod, str] = PaymentMethod.CARD,
    ) -> Policy:
        """Charge the quote total through the payment simulator, then issue."""
        quote = self._get_quote(quote_id)
        self._check_convertible(quote, self.clock())
        payment = self.payments.simulate(quote.breakdown.total, method)
        return self.issue(quote_id, payment, actor)

    # =========================================================================
    # Renewal & cancellation
    # =========================================================================

    def renew(self, policy_id: str, actor: Actor, payment: Optional[PaymentResult] = None) -> Policy:
        """
        Start a new term from the later of the current end date and now.

        The policy returns to ACTIVE with payment PENDING until ``payment`` (if
        given) is recorded. An AMENDMENT document is issued.

        Raises:
            AlreadyTerminal: the policy is CANCELLED
        """
        policy = self.get_policy(policy_id)
        if policy.status == PolicyStatus.CANCELLED:
            raise AlreadyTerminal(policy_id, "renew")

        now = self.clock()
        new_start = max(policy.end_date, now)
        new_end = add_years(new_start, self.settings.policy_term_years)
        if not self.store.update_policy_window(policy_id, policy.status, new_start, new_end, now):
            self._raise_lost_race(policy_id, policy.status, "renew")

        if payment is not None:
            self.store.set_policy_payment(policy_id, payment, now)

        renewed = self.get_policy(policy_id)
        logger.info(f"Policy {policy_id} renewed until {new_end:%Y-%m-%d} by {actor.id}")

        self._issue_endorsement(
            renewed,
            DocumentKind.AMENDMENT,
            actor,
            {"previous_start_date": policy.start_date, "previous_end_date": policy.end_date},
        )
        self.notifier.policy_renewed(renewed)
        self.audit.log_update(actor, "Policy", policy_id, before=_window(policy), after=_window(renewed), operation="renew")
        return self.get_policy(policy_id)

    def cancel(self, policy_id: str, actor: Actor, reason: Optional[str] = None) -> Policy:
        """
        Cancel an ACTIVE or EXPIRED policy and issue a CANCELLATION document.

        Raises:
            AlreadyTerminal: the policy is already CANCELLED
        """
        policy = self.get_policy(policy_id)
        if policy.status == PolicyStatus.CANCELLED:
            raise AlreadyTerminal(policy_id, "cancel")

        now = self.clock()
        if not self.store.compare_and_set_policy_status(
            policy_id,
            (PolicyStatus.ACTIVE, PolicyStatus.EXPIRED),
            PolicyStatus.CANCELLED,
            now,
        ):
            self._raise_lost_race(policy_id, policy.status, "cancel")

        cancelled = self.get_policy(policy_id)
        logger.info(f"Policy {policy_id} cancelled by {actor.id}" + (f": {reason}" if reason else ""))

        self._issue_endorsement(cancelled, DocumentKind.CANCELLATION, actor, {"reason": reason})
        self.notifier.policy_cancelled(cancelled, reason)
        self.audit.log_update(
            actor,
            "Policy",
            policy_id,
            before=_window(policy),
            after=_window(cancelled),
            operation="cancel",
            reason=reason,
        )
        return self.get_policy(policy_id)

    # =========================================================================
    # Expiry
    # =========================================================================

    def expire_overdue(self, now: Optional[datetime] = None) -> List[Policy]:
        """
        Move ACTIVE policies whose end date has passed to EXPIRED.

        Returns only the policies transitioned by this call; already expired
        policies are left alone, so re-running is a no-op.
        """
        now = now or self.clock()
        expired = self.store.expire_policies_ended_before(now)
        for policy in expired:
            self.audit.log_update(
                SYSTEM_ACTOR,
                "Policy",
                policy.policy_id,
                before={"status": PolicyStatus.ACTIVE.value},
                after={"status": PolicyStatus.EXPIRED.value},
                operation="expire",
            )
        return expired

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_quote(self, quote_id: str) -> Quote:
        quote = self.store.get_quote(quote_id)
        if quote is None:
            raise NotFound("Quote", quote_id)
        return quote

    def _check_convertible(self, quote: Quote, now: datetime) -> None:
        if quote.status != QuoteStatus.PENDING:
            existing = self.store.find_policy_by_quote(quote.quote_id)
            if existing is not None:
                raise DuplicatePolicy(quote.quote_id, existing.policy_id)
            raise QuoteNotConvertible(quote.quote_id, f"status is {quote.status.value}")
        if quote.is_expired(now):
            raise QuoteNotConvertible(quote.quote_id, f"expired on {quote.expires_at:%Y-%m-%d %H:%M}")
        existing = self.store.find_policy_by_quote(quote.quote_id)
        if existing is not None:
            raise DuplicatePolicy(quote.quote_id, existing.policy_id)

    def _raise_lost_race(self, policy_id: str, expected: PolicyStatus, operation: str) -> None:
        current = self.get_policy(policy_id)
        if current.status == PolicyStatus.CANCELLED:
            raise AlreadyTerminal(policy_id, operation)
        raise ConcurrentModification("Policy", policy_id, expected.value)

    def _issue_documents(self, policy: Policy, actor: Actor) -> None:
        try:
            self.pipeline.issue(policy, actor)
        except Exception as e:
            logger.exception(f"Document issuance for policy {policy.policy_id} failed: {e}")

    def _issue_endorsement(
        self,
        policy: Policy,
        kind: DocumentKind,
        actor: Actor,
        extra: Dict[str, Any],
    ) -> None:
        try:
            self.pipeline.issue_endorsement(policy, kind, actor, extra)
        except Exception as e:
            logger.exception(f"{kind.value} document for policy {policy.policy_id} failed: {e}")
