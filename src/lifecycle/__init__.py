"""
Shared schema and error taxonomy for the policy & claims lifecycle engine.
"""

from .errors import (
    AlreadyTerminal,
    ConcurrentModification,
    DuplicatePolicy,
    IllegalTransition,
    InvalidInput,
    LifecycleError,
    NotFound,
    QuoteNotConvertible,
    RegistryFailure,
    RenderFailure,
    StorageFailure,
    TerminalStateViolation,
)
from .schema import (
    # Enums
    AuditAction,
    ClaimStatus,
    DocumentKind,
    FranchiseType,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    PolicyStatus,
    ProductStatus,
    QuoteStatus,
    Role,
    # Models
    Actor,
    AddOn,
    Attachment,
    AuditEntry,
    Claim,
    ClaimHistoryEntry,
    ClaimMessage,
    Document,
    Franchise,
    Incident,
    Notification,
    PaymentResult,
    Policy,
    PricingBreakdown,
    PricingSnapshot,
    Product,
    Quote,
    RelatedEntity,
    Tariff,
    Vehicle,
    # Helpers
    SYSTEM_ACTOR,
    new_id,
    utc_now,
)

__all__ = [
    # Errors
    "LifecycleError",
    "InvalidInput",
    "NotFound",
    "IllegalTransition",
    "TerminalStateViolation",
    "QuoteNotConvertible",
    "DuplicatePolicy",
    "AlreadyTerminal",
    "RenderFailure",
    "RegistryFailure",
    "StorageFailure",
    "ConcurrentModification",
    # Enums
    "AuditAction",
    "ClaimStatus",
    "DocumentKind",
    "FranchiseType",
    "NotificationType",
    "PaymentMethod",
    "PaymentStatus",
    "PolicyStatus",
    "ProductStatus",
    "QuoteStatus",
    "Role",
    # Models
    "Actor",
    "AddOn",
    "Attachment",
    "AuditEntry",
    "Claim",
    "ClaimHistoryEntry",
    "ClaimMessage",
    "Document",
    "Franchise",
    "Incident",
    "Notification",
    "PaymentResult",
    "Policy",
    "PricingBreakdown",
    "PricingSnapshot",
    "Product",
    "Quote",
    "RelatedEntity",
    "Tariff",
    "Vehicle",
    # Helpers
    "SYSTEM_ACTOR",
    "new_id",
    "utc_now",
]
