"""
Motor claim workflow.

Handles the life of a claim after the client files it:
- Filing against an active policy
- Status transitions through a closed table (SETTLED and REJECTED are terminal)
- Expert assignment
- Message thread and attachments

Every status change is written as a compare-and-set on the current status
together with its history entry, so a change validated against one status is
never applied on top of another.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional

from ..lifecycle.errors import (
    ConcurrentModification,
    IllegalTransition,
    InvalidInput,
    NotFound,
    TerminalStateViolation,
)
from ..lifecycle.schema import (
    Actor,
    Attachment,
    Claim,
    ClaimHistoryEntry,
    ClaimMessage,
    ClaimStatus,
    Incident,
    PolicyStatus,
    utc_now,
)
from ..notifications.audit import AuditTrail
from ..notifications.notifier import Notifier
from ..storage.lifecycle_store import LifecycleStore

logger = logging.getLogger(__name__)


# =============================================================================
# Transition table
# =============================================================================


ALLOWED_TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    ClaimStatus.RECEIVED: frozenset({
        ClaimStatus.UNDER_REVIEW,
        ClaimStatus.NEED_MORE_INFO,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.UNDER_REVIEW: frozenset({
        ClaimStatus.NEED_MORE_INFO,
        ClaimStatus.EXPERT_ASSIGNED,
        ClaimStatus.SETTLED,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.NEED_MORE_INFO: frozenset({
        ClaimStatus.UNDER_REVIEW,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.EXPERT_ASSIGNED: frozenset({
        ClaimStatus.IN_REPAIR,
        ClaimStatus.SETTLED,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.IN_REPAIR: frozenset({
        ClaimStatus.SETTLED,
        ClaimStatus.REJECTED,
    }),
    ClaimStatus.SETTLED: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset({ClaimStatus.SETTLED, ClaimStatus.REJECTED})

# Expert assignment is refused once work has started or the claim is closed
ASSIGN_BLOCKED_STATUSES = frozenset({ClaimStatus.IN_REPAIR, ClaimStatus.SETTLED, ClaimStatus.REJECTED})

STATUS_LABELS = {
    ClaimStatus.RECEIVED: "Received",
    ClaimStatus.UNDER_REVIEW: "Under review",
    ClaimStatus.NEED_MORE_INFO: "Information requested",
    ClaimStatus.EXPERT_ASSIGNED: "Expert assigned",
    ClaimStatus.IN_REPAIR: "In repair",
    ClaimStatus.SETTLED: "Settled",
    ClaimStatus.REJECTED: "Rejected",
}


# =============================================================================
# Helper Functions
# =============================================================================


def possible_transitions(status: ClaimStatus) -> List[ClaimStatus]:
    """Statuses reachable from ``status`` through ``transition``, in declaration order."""
    allowed = ALLOWED_TRANSITIONS.get(status, frozenset())
    return [s for s in ClaimStatus if s in allowed]


def is_terminal(status: ClaimStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_transition_allowed(current: ClaimStatus, requested: ClaimStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: ClaimStatus, requested: ClaimStatus) -> None:
    """
    Raise if ``current -> requested`` is not permitted.

    Same-state requests pass (they are treated as a no-op by the caller).
    """
    if current == requested:
        return
    if is_terminal(current):
        raise TerminalStateViolation(current.value, requested.value)
    if not is_transition_allowed(current, requested):
        raise IllegalTransition(current.value, requested.value)


def can_assign_expert(claim: Claim) -> bool:
    return claim.status not in ASSIGN_BLOCKED_STATUSES


def status_label(status: ClaimStatus) -> str:
    return STATUS_LABELS.get(status, status.value)


# =============================================================================
# Main API
# =============================================================================


class ClaimWorkflow:
    """
    File claims and move them through the workflow.
    """

    def __init__(
        self,
        store: LifecycleStore,
        notifier: Notifier,
        audit: AuditTrail,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.audit = audit
        self.clock = clock or utc_now

    def get_claim(self, claim_id: str) -> Claim:
        claim = self.store.get_claim(claim_id)
        if claim is None:
            raise NotFound("Claim", claim_id)
        return claim

    def file_claim(self, policy_id: str, actor: Actor, incident: Incident) -> Claim:
        """
        Open a RECEIVED claim against an active policy.

        Args:
            policy_id: Policy the incident is covered by
            actor: Caller filing the claim
            incident: Date, location, type and description of the incident

        Raises:
            NotFound: unknown policy
            InvalidInput: policy not ACTIVE, or incident outside the coverage window
        """
        policy = self.store.get_policy(policy_id)
        if policy is None:
            raise NotFound("Policy", policy_id)
        if policy.status != PolicyStatus.ACTIVE:
            raise InvalidInput(f"Policy {policy_id} is {policy.status.value}; claims require an ACTIVE policy")

        # Coverage is checked by calendar day
        incident_day = incident.date.date()
        if not policy.start_date.date() <= incident_day <= policy.end_date.date():
            raise InvalidInput(
                f"Incident date {incident_day} is outside the coverage window "
                f"{policy.start_date:%Y-%m-%d} .. {policy.end_date:%Y-%m-%d}"
            )

        now = self.clock()
        claim = Claim(
            owner=policy.owner,
            policy_ref=policy.policy_id,
            vehicle_ref=policy.vehicle_ref,
            status=ClaimStatus.RECEIVED,
            incident=incident,
            history=[
                ClaimHistoryEntry(status=ClaimStatus.RECEIVED, changed_by=actor.id, note="Claim filed", at=now),
            ],
            created_at=now,
            updated_at=now,
        )
        self.store.create_claim(claim)
        logger.info(f"Claim {claim.claim_id} filed on policy {policy_id} by {actor.id}")

        self.audit.log_create(actor, "Claim", claim.claim_id, claim.model_dump(mode="json"))
        return claim

    def transition(
        self,
        claim_id: str,
        new_status: ClaimStatus,
        actor: Actor,
        note: str = "",
    ) -> Claim:
        """
        Move a claim to ``new_status``.

        A request for the current status succeeds without writing anything.

        Raises:
            NotFound: unknown claim
            TerminalStateViolation: claim is SETTLED or REJECTED
            IllegalTransition: edge not in the transition table
            ConcurrentModification: the status changed while this call ran
        """
        claim = self.get_claim(claim_id)
        current = claim.status
        if new_status == current:
            logger.debug(f"Claim {claim_id} already {current.value}, nothing to do")
            return claim

        validate_transition(current, new_status)

        entry = ClaimHistoryEntry(status=new_status, changed_by=actor.id, note=note, at=self.clock())
        if not self.store.apply_claim_transition(claim_id, current, entry):
            raise ConcurrentModification("Claim", claim_id, current.value)

        updated = self.get_claim(claim_id)
        logger.info(f"Claim {claim_id}: {current.value} -> {new_status.value} by {actor.id}")

        self.notifier.claim_status_changed(updated, new_status)
        if new_status == ClaimStatus.NEED_MORE_INFO:
            self.notifier.claim_need_more_info(updated, note)
        self.audit.log_update(
            actor,
            "Claim",
            claim_id,
            before={"status": current.value},
            after={"status": new_status.value},
            note=note,
        )
        return updated

    def assign_expert(
        self,
        claim_id: str,
        expert_id: str,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Claim:
        """
        Assign an expert and force the claim to EXPERT_ASSIGNED.

        Allowed from any status except IN_REPAIR, SETTLED and REJECTED. This
        bypasses the transition table, so RECEIVED and NEED_MORE_INFO claims
        can be assigned directly. Reassigning an EXPERT_ASSIGNED claim records
        a new history entry.
        """
        if not expert_id or not expert_id.strip():
            raise InvalidInput("Expert ID is required")

        claim = self.get_claim(claim_id)
        current = claim.status
        if not can_assign_expert(claim):
            if is_terminal(current):
                raise TerminalStateViolation(current.value, ClaimStatus.EXPERT_ASSIGNED.value)
            raise IllegalTransition(current.value, ClaimStatus.EXPERT_ASSIGNED.value)

        entry = ClaimHistoryEntry(
            status=ClaimStatus.EXPERT_ASSIGNED,
            changed_by=actor.id,
            note=note or "Expert assigned",
            at=self.clock(),
        )
        if not self.store.apply_claim_transition(claim_id, current, entry, expert_ref=expert_id):
            raise ConcurrentModification("Claim", claim_id, current.value)

        updated = self.get_claim(claim_id)
        logger.info(f"Claim {claim_id} assigned to expert {expert_id} by {actor.id}")

        self.notifier.claim_assigned(updated, expert_id)
        self.notifier.claim_status_changed(updated, ClaimStatus.EXPERT_ASSIGNED)
        self.audit.log_update(
            actor,
            "Claim",
            claim_id,
            before={"status": current.value, "expert_ref": claim.expert_ref},
            after={"status": ClaimStatus.EXPERT_ASSIGNED.value, "expert_ref": expert_id},
        )
        return updated

    def add_message(self, claim_id: str, actor: Actor, text: str) -> Claim:
        """Append a message to the claim thread and notify the other party."""
        if not text or not text.strip():
            raise InvalidInput("Message cannot be empty")

        claim = self.get_claim(claim_id)
        message = ClaimMessage(from_user=actor.id, from_role=actor.role, message=text.strip(), at=self.clock())
        if not self.store.append_claim_message(claim_id, message):
            raise NotFound("Claim", claim_id)

        # Owner <-> assigned expert; staff messages go to the owner
        recipient = claim.expert_ref if actor.id == claim.owner else claim.owner
        if recipient and recipient != actor.id:
            self.notifier.message_received(claim, recipient, actor.id)
        return self.get_claim(claim_id)

    def add_attachment(
        self,
        claim_id: str,
        actor: Actor,
        name: str,
        url: str,
        mime_type: Optional[str] = None,
        size: Optional[int] = None,
    ) -> Claim:
        if not name or not url:
            raise InvalidInput("Attachment name and url are required")

        self.get_claim(claim_id)
        attachment = Attachment(
            name=name,
            url=url,
            mime_type=mime_type,
            size=size,
            uploaded_by=actor.id,
            uploaded_at=self.clock(),
        )
        if not self.store.append_claim_attachment(claim_id, attachment):
            raise NotFound("Claim", claim_id)
        logger.info(f"Attachment {name} added to claim {claim_id} by {actor.id}")
        return self.get_claim(claim_id)
