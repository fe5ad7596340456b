"""Claim workflow: filing, transitions, expert assignment, messages."""

from .workflow import (
    ALLOWED_TRANSITIONS,
    ASSIGN_BLOCKED_STATUSES,
    TERMINAL_STATUSES,
    ClaimWorkflow,
    can_assign_expert,
    is_terminal,
    is_transition_allowed,
    possible_transitions,
    status_label,
    validate_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ASSIGN_BLOCKED_STATUSES",
    "TERMINAL_STATUSES",
    "ClaimWorkflow",
    "can_assign_expert",
    "is_terminal",
    "is_transition_allowed",
    "possible_transitions",
    "status_label",
    "validate_transition",
]
