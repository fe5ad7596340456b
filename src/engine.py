"""
Wiring of the lifecycle services around one store.

Request handlers and the scheduled sweep share nothing but the store, so an
engine is cheap to build and each entry point can own its own instance.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .claims.workflow import ClaimWorkflow
from .documents.issuance import DocumentIssuancePipeline
from .documents.renderer import DocumentRenderer, FpdfRenderer
from .lifecycle.schema import utc_now
from .notifications.audit import AuditTrail, StoreAuditSink
from .notifications.notifier import Notifier, StoreNotificationSink
from .numbering.sequence_registry import SequenceRegistry
from .policies.lifecycle import PolicyLifecycleManager
from .policies.payment import PaymentSimulator
from .pricing.quotes import QuoteService
from .storage.blob_store import LocalBlobStore
from .storage.lifecycle_store import LifecycleStore
from .sweeper.daily_sweep import InvariantSweeper
from .utils.config import Settings, get_settings


@dataclass
class LifecycleEngine:
    store: LifecycleStore
    registry: SequenceRegistry
    quotes: QuoteService
    documents: DocumentIssuancePipeline
    policies: PolicyLifecycleManager
    claims: ClaimWorkflow
    notifier: Notifier
    audit: AuditTrail
    sweeper: InvariantSweeper

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        store: Optional[LifecycleStore] = None,
        renderer: Optional[DocumentRenderer] = None,
        payments: Optional[PaymentSimulator] = None,
    ) -> "LifecycleEngine":
        settings = settings or get_settings()
        clock = clock or utc_now
        store = store or LifecycleStore(settings.db_path)

        notifier = Notifier(StoreNotificationSink(store, clock), currency=settings.currency)
        audit = AuditTrail(StoreAuditSink(store), clock)
        registry = SequenceRegistry(store, clock)
        documents = DocumentIssuancePipeline(
            store,
            registry,
            renderer or FpdfRenderer(),
            LocalBlobStore(settings.documents_dir),
            settings,
            clock,
        )
        policies = PolicyLifecycleManager(
            store,
            documents,
            notifier,
            audit,
            settings,
            clock,
            payments or PaymentSimulator(settings.payment_success_rate, clock=clock),
        )
        return cls(
            store=store,
            registry=registry,
            quotes=QuoteService(store, settings, clock),
            documents=documents,
            policies=policies,
            claims=ClaimWorkflow(store, notifier, audit, clock),
            notifier=notifier,
            audit=audit,
            sweeper=InvariantSweeper(store, policies, notifier, settings, clock),
        )
