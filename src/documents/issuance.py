"""
Document issuance pipeline.

Produces the matched set of legal documents for a policy:
- Claim an official number from the sequence registry
- Render the document with that number
- Store the bytes in the blob store
- Persist the document metadata and point the policy at the new set

Batches are not transactional. If rendering, blob storage or the metadata write fails for one kind,
numbers already claimed stay consumed, the documents already produced are
kept, and the failure is logged. A policy with fewer than three active
documents is repaired with ``regenerate``.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..lifecycle.errors import RegistryFailure, RenderFailure, StorageFailure
from ..lifecycle.schema import Actor, Document, DocumentKind, Policy, utc_now
from ..numbering.sequence_registry import SequenceRegistry
from ..storage.blob_store import LocalBlobStore
from ..storage.lifecycle_store import LifecycleStore
from ..utils.config import Settings, get_settings
from .renderer import DocumentRenderer

logger = logging.getLogger(__name__)

# Issued together, in this order, for every paid policy
ISSUANCE_KINDS = (
    DocumentKind.ATTESTATION,
    DocumentKind.CONTRACT,
    DocumentKind.RECEIPT,
)

ENDORSEMENT_KINDS = (
    DocumentKind.AMENDMENT,
    DocumentKind.CANCELLATION,
)


class DocumentIssuancePipeline:
    """Issues, regenerates and endorses policy documents."""

    def __init__(
        self,
        store: LifecycleStore,
        registry: SequenceRegistry,
        renderer: DocumentRenderer,
        blob_store: LocalBlobStore,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.registry = registry
        self.renderer = renderer
        self.blob_store = blob_store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    def issue(self, policy: Policy, actor: Actor) -> List[Document]:
        """
        Issue ATTESTATION, CONTRACT and RECEIPT for ``policy``.

        Returns:
            The documents produced, in issuance order. Fewer than three means
            the batch stopped on a failure (already logged).
        """
        generated_at = self.clock()
        base = self._data_bag(policy, generated_at)

        documents: List[Document] = []
        for kind in ISSUANCE_KINDS:
            try:
                documents.append(self._issue_one(policy, kind, actor, base, generated_at))
            except (RenderFailure, RegistryFailure, StorageFailure, OSError) as e:
                logger.error(f"Issuance of {kind.value} for policy {policy.policy_id} failed: {e}")
                break

        self.store.set_policy_document_refs(policy.policy_id, [d.document_id for d in documents], generated_at)

        if len(documents) < len(ISSUANCE_KINDS):
            issued = ", ".join(d.number for d in documents) or "none"
            logger.warning(
                f"Incomplete document set for policy {policy.policy_id}: "
                f"{len(documents)}/{len(ISSUANCE_KINDS)} issued ({issued}); regenerate to repair"
            )
        else:
            logger.info(
                f"Issued documents for policy {policy.policy_id}: "
                f"{', '.join(d.number for d in documents)}"
            )
        return documents

    def regenerate(self, policy: Policy, actor: Actor) -> List[Document]:
        """
        Supersede every active document of the policy, then issue a new set.

        Superseded documents are flagged inactive and kept; numbers are never reused.
        """
        superseded = self.store.deactivate_documents(policy.policy_id)
        logger.info(f"Superseded {superseded} document(s) of policy {policy.policy_id}")
        current = self.store.get_policy(policy.policy_id) or policy
        return self.issue(current, actor)

    def issue_endorsement(
        self,
        policy: Policy,
        kind: DocumentKind,
        actor: Actor,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[Document]:
        """
        Issue a single AMENDMENT or CANCELLATION document and attach it to the policy.

        Returns None (and logs) if the document could not be produced.
        """
        if kind not in ENDORSEMENT_KINDS:
            raise ValueError(f"{kind.value} is not an endorsement kind")
        generated_at = self.clock()
        base = self._data_bag(policy, generated_at, extra)
        try:
            document = self._issue_one(policy, kind, actor, base, generated_at)
        except (RenderFailure, RegistryFailure, StorageFailure, OSError) as e:
            logger.error(f"Issuance of {kind.value} for policy {policy.policy_id} failed: {e}")
            return None

        current = self.store.get_policy(policy.policy_id) or policy
        self.store.set_policy_document_refs(
            policy.policy_id, [*current.document_refs, document.document_id], generated_at
        )
        logger.info(f"Issued {kind.value} {document.number} for policy {policy.policy_id}")
        return document

    def active_documents(self, policy_id: str) -> List[Document]:
        return self.store.list_documents_by_policy(policy_id, active_only=True)

    def missing_kinds(self, policy_id: str) -> List[DocumentKind]:
        """Issuance kinds without an active document."""
        present = {d.kind for d in self.store.list_documents_by_policy(policy_id, active_only=True, kinds=ISSUANCE_KINDS)}
        return [k for k in ISSUANCE_KINDS if k not in present]

    def is_complete(self, policy_id: str) -> bool:
        return not self.missing_kinds(policy_id)

    def _issue_one(
        self,
        policy: Policy,
        kind: DocumentKind,
        actor: Actor,
        base: Dict[str, Any],
        generated_at: datetime,
    ) -> Document:
        number = self.registry.next_document_number(kind)
        content = self.renderer.render(kind, {**base, "number": number})
        location = self.blob_store.put(f"{number}.pdf", content)

        document = Document(
            number=number,
            kind=kind,
            policy_ref=policy.policy_id,
            blob_location=location,
            byte_size=len(content),
            is_active=True,
            generated_by=actor.id,
            generated_at=generated_at,
            metadata={
                "premium": str(policy.premium),
                "start_date": policy.start_date.isoformat(),
                "end_date": policy.end_date.isoformat(),
                "vehicle_plate_number": (base.get("vehicle") or {}).get("plate_number"),
            },
        )
        try:
            return self.store.create_document(document)
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not record {number} for policy {policy.policy_id}: {e}") from e

    def _data_bag(
        self,
        policy: Policy,
        generated_at: datetime,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Snapshot of everything a document prints."""
        vehicle = self.store.get_vehicle(policy.vehicle_ref)
        product = self.store.get_product(policy.product_ref)
        quote = self.store.get_quote(policy.quote_ref)
        return {
            "policy": policy.model_dump(mode="json"),
            "vehicle": vehicle.model_dump(mode="json") if vehicle else {},
            "product": product.model_dump(mode="json") if product else {},
            "quote": quote.model_dump(mode="json") if quote else {},
            "payment": {
                "method": policy.payment_method.value if policy.payment_method else None,
                "status": policy.payment_status.value,
                "date": policy.payment_date,
                "transaction_id": policy.transaction_id,
            },
            "currency": quote.currency if quote else self.settings.currency,
            "generated_at": generated_at,
            "extra": extra or {},
        }
