"""
Error taxonomy for the policy & claims lifecycle engine.

Validation and state-legality errors are raised before anything is written,
so a caller can inspect the attributes and retry with corrected input.
"""

from typing import Optional


class LifecycleError(Exception):
    """Base class for every error raised by the lifecycle engine."""


class InvalidInput(LifecycleError):
    """Bad pricing, quoting or filing input."""


class NotFound(LifecycleError):
    """A referenced record does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class IllegalTransition(LifecycleError):
    """The requested claim status change is not in the transition table."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Transition not allowed: {current} -> {requested}")


class TerminalStateViolation(LifecycleError):
    """The claim is settled or rejected and can no longer change."""

    def __init__(self, current: str, requested: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(f"Claim is {current} and can no longer be modified")


class QuoteNotConvertible(LifecycleError):
    """The quote is not PENDING or has passed its expiry date."""

    def __init__(self, quote_id: str, reason: str):
        self.quote_id = quote_id
        self.reason = reason
        super().__init__(f"Quote {quote_id} cannot be converted: {reason}")


class DuplicatePolicy(LifecycleError):
    """A policy already references this quote."""

    def __init__(self, quote_id: str, policy_id: str):
        self.quote_id = quote_id
        self.policy_id = policy_id
        super().__init__(f"Quote {quote_id} already converted into policy {policy_id}")


class AlreadyTerminal(LifecycleError):
    """The policy is cancelled; no further lifecycle operation applies."""

    def __init__(self, policy_id: str, operation: str):
        self.policy_id = policy_id
        self.operation = operation
        super().__init__(f"Cannot {operation} policy {policy_id}: already CANCELLED")


class RenderFailure(LifecycleError):
    """The rendering engine could not produce a document."""


class RegistryFailure(LifecycleError):
    """A sequence number could not be durably committed."""


class StorageFailure(LifecycleError):
    """A document record could not be written to the store."""


class ConcurrentModification(LifecycleError):
    """A status compare-and-set lost a race with another writer."""

    def __init__(self, entity: str, entity_id: str, expected: str):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        super().__init__(f"{entity} {entity_id} changed concurrently (expected status {expected})")
