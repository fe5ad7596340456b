"""
Fire-and-forget notifications.

The ``Notifier`` builds typed messages for lifecycle events and hands them
to a sink. Sink failures are logged and never reach the caller: a failed
notification must not abort an otherwise successful lifecycle mutation.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from ..lifecycle.schema import (
    Claim,
    ClaimStatus,
    Notification,
    NotificationType,
    Policy,
    RelatedEntity,
    utc_now,
)
from ..storage.lifecycle_store import LifecycleStore

logger = logging.getLogger(__name__)


STATUS_PHRASES = {
    ClaimStatus.RECEIVED: "received",
    ClaimStatus.UNDER_REVIEW: "under review",
    ClaimStatus.NEED_MORE_INFO: "waiting for additional information",
    ClaimStatus.EXPERT_ASSIGNED: "assigned to an expert",
    ClaimStatus.IN_REPAIR: "in repair",
    ClaimStatus.SETTLED: "settled",
    ClaimStatus.REJECTED: "rejected",
}


class NotificationSink(Protocol):
    def notify(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_entity: Optional[RelatedEntity] = None,
    ) -> None:
        ...


class StoreNotificationSink:
    """Persists notifications in the lifecycle store."""

    def __init__(self, store: LifecycleStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    def notify(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_entity: Optional[RelatedEntity] = None,
    ) -> None:
        self.store.add_notification(
            Notification(
                recipient_id=recipient_id,
                type=type,
                title=title,
                message=message,
                related_entity=related_entity,
                created_at=self.clock(),
            )
        )


class RecordingNotificationSink:
    """Keeps notifications in memory (used by tests and dry runs)."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def notify(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_entity: Optional[RelatedEntity] = None,
    ) -> None:
        self.notifications.append(
            Notification(
                recipient_id=recipient_id,
                type=type,
                title=title,
                message=message,
                related_entity=related_entity,
            )
        )

    def of_type(self, type: NotificationType) -> List[Notification]:
        return [n for n in self.notifications if n.type == type]


def _policy_ref(policy: Policy) -> RelatedEntity:
    return RelatedEntity(entity_type="Policy", entity_id=policy.policy_id)


def _claim_ref(claim: Claim) -> RelatedEntity:
    return RelatedEntity(entity_type="Claim", entity_id=claim.claim_id)


class Notifier:
    """Typed notification helpers over a sink. Never raises."""

    def __init__(self, sink: NotificationSink, currency: str = "XOF"):
        self.sink = sink
        self.currency = currency

    def send(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_entity: Optional[RelatedEntity] = None,
    ) -> bool:
        """Deliver one notification. Returns False (and logs) if the sink failed."""
        try:
            self.sink.notify(recipient_id, type, title, message, related_entity)
            return True
        except Exception as e:
            logger.error(f"Notification {type.value} to {recipient_id} failed: {e}")
            return False

    # Policies

    def policy_created(self, policy: Policy, product_name: str = "auto") -> bool:
        return self.send(
            policy.owner,
            NotificationType.POLICY_CREATED,
            "Insurance policy created",
            f"Your {product_name} insurance policy was created. Premium: {policy.premium} {self.currency}",
            _policy_ref(policy),
        )

    def payment_success(self, policy: Policy) -> bool:
        return self.send(
            policy.owner,
            NotificationType.PAYMENT_SUCCESS,
            "Payment confirmed",
            f"Your payment of {policy.premium} {self.currency} was confirmed. Your policy is now active.",
            _policy_ref(policy),
        )

    def policy_renewed(self, policy: Policy) -> bool:
        return self.send(
            policy.owner,
            NotificationType.POLICY_RENEWED,
            "Policy renewed",
            f"Your policy now runs until {policy.end_date:%Y-%m-%d}.",
            _policy_ref(policy),
        )

    def policy_cancelled(self, policy: Policy, reason: Optional[str] = None) -> bool:
        suffix = f" Reason: {reason}" if reason else ""
        return self.send(
            policy.owner,
            NotificationType.POLICY_CANCELLED,
            "Policy cancelled",
            f"Your insurance policy was cancelled.{suffix}",
            _policy_ref(policy),
        )

    def policy_expiring(self, policy: Policy, now: datetime) -> bool:
        days = policy.days_remaining(now)
        return self.send(
            policy.owner,
            NotificationType.POLICY_EXPIRING,
            "Policy expiring soon",
            f"Your insurance policy expires in {days} days. Remember to renew it.",
            _policy_ref(policy),
        )

    def policy_expired(self, policy: Policy) -> bool:
        return self.send(
            policy.owner,
            NotificationType.POLICY_EXPIRED,
            "Policy expired",
            "Your insurance policy has expired. Renew it to stay covered.",
            _policy_ref(policy),
        )

    # Claims

    def claim_status_changed(self, claim: Claim, new_status: ClaimStatus) -> bool:
        label = STATUS_PHRASES.get(new_status, new_status.value)
        return self.send(
            claim.owner,
            NotificationType.CLAIM_STATUS_CHANGED,
            "Claim status updated",
            f"Your claim is now {label}.",
            _claim_ref(claim),
        )

    def claim_need_more_info(self, claim: Claim, note: str = "") -> bool:
        return self.send(
            claim.owner,
            NotificationType.CLAIM_NEED_MORE_INFO,
            "Additional information required",
            f"Additional information is needed for your claim. {note}".strip(),
            _claim_ref(claim),
        )

    def claim_assigned(self, claim: Claim, expert_id: str) -> bool:
        return self.send(
            expert_id,
            NotificationType.CLAIM_ASSIGNED,
            "New claim assigned",
            "A new claim was assigned to you for assessment.",
            _claim_ref(claim),
        )

    def message_received(self, claim: Claim, recipient_id: str, sender: str) -> bool:
        return self.send(
            recipient_id,
            NotificationType.MESSAGE_RECEIVED,
            "New message",
            f"{sender} added a message to claim {claim.claim_id}.",
            _claim_ref(claim),
        )
