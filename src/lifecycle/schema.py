"""
Canonical schema for the policy & claims lifecycle engine.

Defines the Pydantic models persisted by the store and exchanged between
the pricing, issuance, policy and claim services.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a record ID such as ``POL-3F2A9C0D1B7E``."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


# ============================================================================
# Enums
# ============================================================================


class Role(str, Enum):
    """Role of the authenticated actor."""
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"
    AGENT = "AGENT"
    EXPERT = "EXPERT"
    SYSTEM = "SYSTEM"


class ProductStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class FranchiseType(str, Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class QuoteStatus(str, Enum):
    PENDING = "PENDING"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"


class PolicyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"


class DocumentKind(str, Enum):
    """Kinds of legal documents attached to a policy."""
    ATTESTATION = "ATTESTATION"
    CONTRACT = "CONTRACT"
    RECEIPT = "RECEIPT"
    AMENDMENT = "AMENDMENT"
    CANCELLATION = "CANCELLATION"


class ClaimStatus(str, Enum):
    """Claim workflow states. SETTLED and REJECTED are terminal."""
    RECEIVED = "RECEIVED"
    UNDER_REVIEW = "UNDER_REVIEW"
    NEED_MORE_INFO = "NEED_MORE_INFO"
    EXPERT_ASSIGNED = "EXPERT_ASSIGNED"
    IN_REPAIR = "IN_REPAIR"
    SETTLED = "SETTLED"
    REJECTED = "REJECTED"


class NotificationType(str, Enum):
    POLICY_CREATED = "POLICY_CREATED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    POLICY_RENEWED = "POLICY_RENEWED"
    POLICY_CANCELLED = "POLICY_CANCELLED"
    POLICY_EXPIRING = "POLICY_EXPIRING"
    POLICY_EXPIRED = "POLICY_EXPIRED"
    CLAIM_STATUS_CHANGED = "CLAIM_STATUS_CHANGED"
    CLAIM_NEED_MORE_INFO = "CLAIM_NEED_MORE_INFO"
    CLAIM_ASSIGNED = "CLAIM_ASSIGNED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"


# ============================================================================
# Identity
# ============================================================================


class Actor(BaseModel):
    """Authenticated caller of a lifecycle operation."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="User ID supplied by the identity layer")
    role: Role = Field(default=Role.CLIENT)


SYSTEM_ACTOR = Actor(id="system", role=Role.SYSTEM)


# ============================================================================
# Catalogue: vehicles & products
# ============================================================================


class Vehicle(BaseModel):
    """An insured vehicle. Only ``market_value`` matters for pricing."""
    vehicle_id: str = Field(default_factory=lambda: new_id("VEH"))
    owner: str
    plate_number: str
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    category: Optional[str] = None
    market_value: Optional[Decimal] = Field(None, description="Market value used as pricing basis")


class Tariff(BaseModel):
    """Pricing parameters attached to a product."""
    base_rate: Optional[Decimal] = Field(
        None,
        description="Percentage of market value when <= 100, flat amount when > 100",
    )
    vehicle_value_rate: Optional[Decimal] = Field(
        None,
        description="Always a percentage of market value",
    )


class AddOn(BaseModel):
    """Optional cover the client can add to a quote."""
    code: str
    label: str
    price: Decimal = Field(ge=0)


class Franchise(BaseModel):
    amount: Decimal = Field(ge=0)
    type: FranchiseType = FranchiseType.FIXED


class Product(BaseModel):
    """An insurance product with its tariff and available add-ons."""
    product_id: str = Field(default_factory=lambda: new_id("PRD"))
    code: str
    name: str
    status: ProductStatus = ProductStatus.ACTIVE
    tariff: Optional[Tariff] = None
    add_ons: List[AddOn] = Field(default_factory=list)
    franchise: Optional[Franchise] = None


# ============================================================================
# Quotes
# ============================================================================


class PricingBreakdown(BaseModel):
    """Itemized price components, each rounded to 2 decimals."""
    model_config = ConfigDict(frozen=True)

    base: Decimal = Field(ge=0)
    value_part: Decimal = Field(ge=0)
    add_ons_total: Decimal = Field(ge=0)
    total: Decimal = Field(ge=0)


class PricingSnapshot(BaseModel):
    """Tariff parameters frozen at quote time."""
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    base_rate: Decimal
    vehicle_value_rate: Decimal
    franchise: Optional[Franchise] = None


class Quote(BaseModel):
    quote_id: str = Field(default_factory=lambda: new_id("QTE"))
    owner: str
    vehicle_ref: str
    product_ref: str
    selected_add_ons: List[AddOn] = Field(default_factory=list)
    pricing_snapshot: PricingSnapshot
    breakdown: PricingBreakdown
    currency: str = "XOF"
    status: QuoteStatus = QuoteStatus.PENDING
    expires_at: datetime
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


# ============================================================================
# Policies & documents
# ============================================================================


class PaymentResult(BaseModel):
    """Outcome of the payment simulator."""
    success: bool
    payment_status: PaymentStatus
    method: PaymentMethod = PaymentMethod.CARD
    payment_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    message: str = ""


class Policy(BaseModel):
    policy_id: str = Field(default_factory=lambda: new_id("POL"))
    owner: str
    vehicle_ref: str
    product_ref: str
    quote_ref: str
    premium: Decimal = Field(ge=0)
    status: PolicyStatus = PolicyStatus.ACTIVE
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    payment_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    start_date: datetime
    end_date: datetime
    document_refs: List[str] = Field(default_factory=list)
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_window(self) -> "Policy":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def days_remaining(self, now: datetime) -> int:
        if self.status != PolicyStatus.ACTIVE:
            return 0
        seconds = (self.end_date - now).total_seconds()
        return max(0, -int(-seconds // 86400))


class Document(BaseModel):
    """Metadata of a rendered legal document. Never deleted, only superseded."""
    document_id: str = Field(default_factory=lambda: new_id("DOC"))
    number: str
    kind: DocumentKind
    policy_ref: str
    blob_location: str
    byte_size: int = Field(ge=0)
    is_active: bool = True
    generated_by: str
    generated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Claims
# ============================================================================


class Incident(BaseModel):
    date: datetime
    location: str = Field(min_length=1)
    type: str = "UNSPECIFIED"
    description: str = Field(min_length=1)


class ClaimHistoryEntry(BaseModel):
    """One entry of the append-only status log."""
    model_config = ConfigDict(frozen=True)

    status: ClaimStatus
    changed_by: str
    note: str = ""
    at: datetime = Field(default_factory=utc_now)


class ClaimMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_user: str
    from_role: Role
    message: str = Field(min_length=1)
    at: datetime = Field(default_factory=utc_now)


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    uploaded_by: str
    uploaded_at: datetime = Field(default_factory=utc_now)


class Claim(BaseModel):
    claim_id: str = Field(default_factory=lambda: new_id("CLM"))
    owner: str
    policy_ref: str
    vehicle_ref: str
    status: ClaimStatus = ClaimStatus.RECEIVED
    incident: Incident
    expert_ref: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    messages: List[ClaimMessage] = Field(default_factory=list)
    history: List[ClaimHistoryEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# Notifications & audit
# ============================================================================


class RelatedEntity(BaseModel):
    entity_type: str
    entity_id: str


class Notification(BaseModel):
    notification_id: str = Field(default_factory=lambda: new_id("NTF"))
    recipient_id: str
    type: NotificationType
    title: str
    message: str
    related_entity: Optional[RelatedEntity] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class AuditEntry(BaseModel):
    audit_id: str = Field(default_factory=lambda: new_id("AUD"))
    actor_id: str
    action: AuditAction
    entity_type: str
    entity_id: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    at: datetime = Field(default_factory=utc_now)
