"""
SQLite-based lifecycle storage.

Stores counters, quotes, policies, documents, claims, notifications and
audit entries in a local SQLite database. No external database setup
required - just works.

Write paths that validate a status and then change it run inside a
``BEGIN IMMEDIATE`` transaction with the expected status in the WHERE
clause, so a transition is always applied against the value it was
checked against. Claim history, messages, attachments, notifications and
audit entries live in append-only tables.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from ..lifecycle.errors import DuplicatePolicy
from ..lifecycle.schema import (
    Attachment,
    AuditEntry,
    Claim,
    ClaimHistoryEntry,
    ClaimMessage,
    ClaimStatus,
    Document,
    DocumentKind,
    Notification,
    PaymentResult,
    PaymentStatus,
    Policy,
    PolicyStatus,
    Product,
    Quote,
    QuoteStatus,
    Vehicle,
)
from ..utils.config import get_settings

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS counters (
    key TEXT PRIMARY KEY,
    value INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS vehicles (
    vehicle_id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
    product_id TEXT PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quotes (
    quote_id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    vehicle_ref TEXT NOT NULL,
    product_ref TEXT NOT NULL,
    selected_add_ons TEXT NOT NULL DEFAULT '[]',
    pricing_snapshot TEXT NOT NULL,
    breakdown TEXT NOT NULL,
    currency TEXT NOT NULL,
    status TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS policies (
    policy_id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    vehicle_ref TEXT NOT NULL,
    product_ref TEXT NOT NULL,
    quote_ref TEXT NOT NULL UNIQUE,
    premium TEXT NOT NULL,
    status TEXT NOT NULL,
    payment_status TEXT NOT NULL,
    payment_method TEXT,
    payment_date TEXT,
    transaction_id TEXT,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    document_refs TEXT NOT NULL DEFAULT '[]',
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    document_id TEXT PRIMARY KEY,
    number TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL,
    policy_ref TEXT NOT NULL,
    blob_location TEXT NOT NULL,
    byte_size INTEGER NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    generated_by TEXT NOT NULL,
    generated_at TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS claims (
    claim_id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    policy_ref TEXT NOT NULL,
    vehicle_ref TEXT NOT NULL,
    status TEXT NOT NULL,
    incident TEXT NOT NULL,
    expert_ref TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS claim_history (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id TEXT NOT NULL,
    status TEXT NOT NULL,
    changed_by TEXT NOT NULL,
    note TEXT NOT NULL DEFAULT '',
    at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS claim_messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id TEXT NOT NULL,
    from_user TEXT NOT NULL,
    from_role TEXT NOT NULL,
    message TEXT NOT NULL,
    at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS claim_attachments (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL,
    mime_type TEXT,
    size INTEGER,
    uploaded_by TEXT NOT NULL,
    uploaded_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
    notification_id TEXT PRIMARY KEY,
    recipient_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    related_entity TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    audit_id TEXT PRIMARY KEY,
    actor_id TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    before TEXT,
    after TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_policies_owner ON policies(owner);
CREATE INDEX IF NOT EXISTS idx_policies_status_end ON policies(status, end_date);
CREATE INDEX IF NOT EXISTS idx_documents_policy ON documents(policy_ref, is_active);
CREATE INDEX IF NOT EXISTS idx_claims_owner ON claims(owner);
CREATE INDEX IF NOT EXISTS idx_claims_policy ON claims(policy_ref);
CREATE INDEX IF NOT EXISTS idx_claims_status_updated ON claims(status, updated_at);
CREATE INDEX IF NOT EXISTS idx_claim_history_claim ON claim_history(claim_id);
CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_id);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id);
"""


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a fixed-width UTC string so text order is time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dumps(value) -> str:
    return json.dumps(value, default=str)


class LifecycleStore:
    """
    SQLite-based storage for the lifecycle engine.

    Usage:
        store = LifecycleStore(Path("data/lifecycle.db"))

        # Atomic counters
        value = store.increment_counter("ATTESTATION_2026")

        # Records
        store.create_policy(policy)
        policy = store.get_policy(policy.policy_id)

        # Guarded status change
        store.compare_and_set_policy_status(policy_id, [PolicyStatus.ACTIVE], PolicyStatus.CANCELLED, now)
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 30.0):
        """Initialize the store and create tables if needed."""
        self.db_path = Path(db_path or get_settings().db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

    @contextmanager
    def _get_connection(self):
        """Get an autocommit database connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self):
        """Run statements in a write transaction, taking the write lock up front."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # =========================================================================
    # Counters
    # =========================================================================

    def increment_counter(self, key: str) -> int:
        """Atomically increment a counter (creating it at 0) and return the new value."""
        now = _ts(datetime.now(timezone.utc))
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO counters (key, value, updated_at) VALUES (?, 1, ?)
                ON CONFLICT(key) DO UPDATE SET value = value + 1, updated_at = excluded.updated_at
                """,
                (key, now),
            )
            row = conn.execute("SELECT value FROM counters WHERE key = ?", (key,)).fetchone()
            return row["value"]

    def get_counter(self, key: str) -> int:
        """Current counter value, 0 if the counter was never used."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM counters WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else 0

    def set_counter(self, key: str, value: int) -> None:
        """Administrative override of a counter value."""
        now = _ts(datetime.now(timezone.utc))
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO counters (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, now),
            )

    # =========================================================================
    # Vehicles & products
    # =========================================================================

    def create_vehicle(self, vehicle: Vehicle) -> Vehicle:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO vehicles (vehicle_id, owner, data) VALUES (?, ?, ?)",
                (vehicle.vehicle_id, vehicle.owner, vehicle.model_dump_json()),
            )
        return vehicle

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT data FROM vehicles WHERE vehicle_id = ?", (vehicle_id,)).fetchone()
        return Vehicle.model_validate_json(row["data"]) if row else None

    def save_product(self, product: Product) -> Product:
        """Insert or replace a product (tariff edits go through here)."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO products (product_id, code, data) VALUES (?, ?, ?)
                ON CONFLICT(product_id) DO UPDATE SET code = excluded.code, data = excluded.data
                """,
                (product.product_id, product.code, product.model_dump_json()),
            )
        return product

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT data FROM products WHERE product_id = ?", (product_id,)).fetchone()
        return Product.model_validate_json(row["data"]) if row else None

    # =========================================================================
    # Quotes
    # =========================================================================

    def create_quote(self, quote: Quote) -> Quote:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO quotes (
                    quote_id, owner, vehicle_ref, product_ref,
                    selected_add_ons, pricing_snapshot, breakdown,
                    currency, status, expires_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    quote.quote_id,
                    quote.owner,
                    quote.vehicle_ref,
                    quote.product_ref,
                    _dumps([a.model_dump(mode="json") for a in quote.selected_add_ons]),
                    quote.pricing_snapshot.model_dump_json(),
                    quote.breakdown.model_dump_json(),
                    quote.currency,
                    quote.status.value,
                    _ts(quote.expires_at),
                    _ts(quote.created_at),
                    _ts(quote.updated_at),
                ),
            )
        return quote

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM quotes WHERE quote_id = ?", (quote_id,)).fetchone()
        return self._row_to_quote(row) if row else None

    def compare_and_set_quote_status(
        self,
        quote_id: str,
        expected: QuoteStatus,
        new: QuoteStatus,
        now: datetime,
    ) -> bool:
        """Set the quote status only if it still equals ``expected``."""
        with self._transaction() as conn:
            result = conn.execute(
                "UPDATE quotes SET status = ?, updated_at = ? WHERE quote_id = ? AND status = ?",
                (new.value, _ts(now), quote_id, expected.value),
            )
            return result.rowcount > 0

    # =========================================================================
    # Policies
    # =========================================================================

    def create_policy(self, policy: Policy) -> Policy:
        """Insert a policy. At most one policy may reference a given quote."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO policies (
                        policy_id, owner, vehicle_ref, product_ref, quote_ref,
                        premium, status, payment_status, payment_method,
                        payment_date, transaction_id, start_date, end_date,
                        document_refs, created_by, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        policy.policy_id,
                        policy.owner,
                        policy.vehicle_ref,
                        policy.product_ref,
                        policy.quote_ref,
                        str(policy.premium),
                        policy.status.value,
                        policy.payment_status.value,
                        policy.payment_method.value if policy.payment_method else None,
                        _ts(policy.payment_date),
                        policy.transaction_id,
                        _ts(policy.start_date),
                        _ts(policy.end_date),
                        _dumps(policy.document_refs),
                        policy.created_by,
                        _ts(policy.created_at),
                        _ts(policy.updated_at),
                    ),
                )
        except sqlite3.IntegrityError:
            existing = self.find_policy_by_quote(policy.quote_ref)
            if existing is None:
                raise
            raise DuplicatePolicy(policy.quote_ref, existing.policy_id)
        return policy

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM policies WHERE policy_id = ?", (policy_id,)).fetchone()
        return self._row_to_policy(row) if row else None

    def find_policy_by_quote(self, quote_id: str) -> Optional[Policy]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM policies WHERE quote_ref = ?", (quote_id,)).fetchone()
        return self._row_to_policy(row) if row else None

    def list_policies(self, status: Optional[PolicyStatus] = None, limit: int = 100, offset: int = 0) -> List[Policy]:
        query = "SELECT * FROM policies WHERE 1=1"
        params: list = []
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_policy(row) for row in rows]

    def list_policies_by_owner(self, owner: str, status: Optional[PolicyStatus] = None) -> List[Policy]:
        query = "SELECT * FROM policies WHERE owner = ?"
        params: list = [owner]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_policy(row) for row in rows]

    def list_policies_ending_between(
        self,
        start: datetime,
        end: datetime,
        status: PolicyStatus = PolicyStatus.ACTIVE,
    ) -> List[Policy]:
        """Policies in ``status`` whose end date falls inside [start, end]."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM policies WHERE status = ? AND end_date >= ? AND end_date <= ? ORDER BY end_date",
                (status.value, _ts(start), _ts(end)),
            ).fetchall()
        return [self._row_to_policy(row) for row in rows]

    def compare_and_set_policy_status(
        self,
        policy_id: str,
        expected: Iterable[PolicyStatus],
        new: PolicyStatus,
        now: datetime,
    ) -> bool:
        """Set the policy status only if it is currently one of ``expected``."""
        expected_values = [s.value for s in expected]
        placeholders = ", ".join("?" for _ in expected_values)
        with self._transaction() as conn:
            result = conn.execute(
                f"UPDATE policies SET status = ?, updated_at = ? WHERE policy_id = ? AND status IN ({placeholders})",
                [new.value, _ts(now), policy_id, *expected_values],
            )
            return result.rowcount > 0

    def update_policy_window(
        self,
        policy_id: str,
        expected: PolicyStatus,
        start_date: datetime,
        end_date: datetime,
        now: datetime,
    ) -> bool:
        """Renewal write: new window, ACTIVE, payment reset to PENDING, guarded on status."""
        with self._transaction() as conn:
            result = conn.execute(
                """
                UPDATE policies
                SET start_date = ?, end_date = ?, status = ?, payment_status = ?,
                    payment_date = NULL, transaction_id = NULL, updated_at = ?
                WHERE policy_id = ? AND status = ?
                """,
                (
                    _ts(start_date),
                    _ts(end_date),
                    PolicyStatus.ACTIVE.value,
                    PaymentStatus.PENDING.value,
                    _ts(now),
                    policy_id,
                    expected.value,
                ),
            )
            return result.rowcount > 0

    def set_policy_payment(self, policy_id: str, payment: PaymentResult, now: datetime) -> bool:
        with self._get_connection() as conn:
            result = conn.execute(
                """
                UPDATE policies
                SET payment_status = ?, payment_method = ?, payment_date = ?, transaction_id = ?, updated_at = ?
                WHERE policy_id = ?
                """,
                (
                    payment.payment_status.value,
                    payment.method.value,
                    _ts(payment.payment_date),
                    payment.transaction_id,
                    _ts(now),
                    policy_id,
                ),
            )
            return result.rowcount > 0

    def set_policy_document_refs(self, policy_id: str, document_ids: Sequence[str], now: datetime) -> bool:
        with self._get_connection() as conn:
            result = conn.execute(
                "UPDATE policies SET document_refs = ?, updated_at = ? WHERE policy_id = ?",
                (_dumps(list(document_ids)), _ts(now), policy_id),
            )
            return result.rowcount > 0

    def expire_policies_ended_before(self, now: datetime) -> List[Policy]:
        """
        Move every ACTIVE policy whose end date is before ``now`` to EXPIRED.

        Each row is updated with its own ACTIVE guard, so a policy renewed or
        cancelled concurrently is left alone. Returns only the policies this
        call transitioned.
        """
        stamp = _ts(now)
        transitioned: List[str] = []
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT policy_id FROM policies WHERE status = ? AND end_date < ?",
                (PolicyStatus.ACTIVE.value, stamp),
            ).fetchall()
            for row in rows:
                result = conn.execute(
                    "UPDATE policies SET status = ?, updated_at = ? WHERE policy_id = ? AND status = ?",
                    (PolicyStatus.EXPIRED.value, stamp, row["policy_id"], PolicyStatus.ACTIVE.value),
                )
                if result.rowcount > 0:
                    transitioned.append(row["policy_id"])
        return [p for p in (self.get_policy(pid) for pid in transitioned) if p is not None]

    # =========================================================================
    # Documents
    # =========================================================================

    def create_document(self, document: Document) -> Document:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    document_id, number, kind, policy_ref, blob_location,
                    byte_size, is_active, generated_by, generated_at, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.document_id,
                    document.number,
                    document.kind.value,
                    document.policy_ref,
                    document.blob_location,
                    document.byte_size,
                    1 if document.is_active else 0,
                    document.generated_by,
                    _ts(document.generated_at),
                    _dumps(document.metadata),
                ),
            )
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM documents WHERE document_id = ?", (document_id,)).fetchone()
        return self._row_to_document(row) if row else None

    def list_documents_by_policy(
        self,
        policy_id: str,
        active_only: bool = False,
        kinds: Optional[Iterable[DocumentKind]] = None,
    ) -> List[Document]:
        query = "SELECT * FROM documents WHERE policy_ref = ?"
        params: list = [policy_id]
        if active_only:
            query += " AND is_active = 1"
        if kinds is not None:
            kind_values = [k.value for k in kinds]
            query += f" AND kind IN ({', '.join('?' for _ in kind_values)})"
            params.extend(kind_values)
        query += " ORDER BY generated_at, number"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def deactivate_documents(self, policy_id: str) -> int:
        """Flag every active document of a policy as superseded. Nothing is deleted."""
        with self._transaction() as conn:
            result = conn.execute(
                "UPDATE documents SET is_active = 0 WHERE policy_ref = ? AND is_active = 1",
                (policy_id,),
            )
            return result.rowcount

    # =========================================================================
    # Claims
    # =========================================================================

    def create_claim(self, claim: Claim) -> Claim:
        """Insert a claim together with its initial history entries."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO claims (
                    claim_id, owner, policy_ref, vehicle_ref, status,
                    incident, expert_ref, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claim.claim_id,
                    claim.owner,
                    claim.policy_ref,
                    claim.vehicle_ref,
                    claim.status.value,
                    claim.incident.model_dump_json(),
                    claim.expert_ref,
                    _ts(claim.created_at),
                    _ts(claim.updated_at),
                ),
            )
            for entry in claim.history:
                self._insert_history(conn, claim.claim_id, entry)
        return claim

    def get_claim(self, claim_id: str) -> Optional[Claim]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM claims WHERE claim_id = ?", (claim_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_claim(conn, row)

    def list_claims_by_owner(self, owner: str, status: Optional[ClaimStatus] = None) -> List[Claim]:
        query = "SELECT * FROM claims WHERE owner = ?"
        params: list = [owner]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_claim(conn, row) for row in rows]

    def list_claims_by_policy(self, policy_id: str) -> List[Claim]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM claims WHERE policy_ref = ? ORDER BY created_at DESC",
                (policy_id,),
            ).fetchall()
            return [self._row_to_claim(conn, row) for row in rows]

    def list_claims(self, status: Optional[ClaimStatus] = None, limit: int = 100, offset: int = 0) -> List[Claim]:
        query = "SELECT * FROM claims WHERE 1=1"
        params: list = []
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_claim(conn, row) for row in rows]

    def list_claims_by_status_and_updated_before(
        self,
        statuses: Iterable[ClaimStatus],
        before: datetime,
    ) -> List[Claim]:
        status_values = [s.value for s in statuses]
        placeholders = ", ".join("?" for _ in status_values)
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM claims WHERE status IN ({placeholders}) AND updated_at < ? ORDER BY updated_at",
                [*status_values, _ts(before)],
            ).fetchall()
            return [self._row_to_claim(conn, row) for row in rows]

    def apply_claim_transition(
        self,
        claim_id: str,
        expected: ClaimStatus,
        entry: ClaimHistoryEntry,
        expert_ref: Optional[str] = None,
    ) -> bool:
        """
        Set the claim status to ``entry.status`` and append ``entry`` to the history,
        both or neither, only if the status still equals ``expected``.
        """
        with self._transaction() as conn:
            if expert_ref is not None:
                result = conn.execute(
                    "UPDATE claims SET status = ?, expert_ref = ?, updated_at = ? WHERE claim_id = ? AND status = ?",
                    (entry.status.value, expert_ref, _ts(entry.at), claim_id, expected.value),
                )
            else:
                result = conn.execute(
                    "UPDATE claims SET status = ?, updated_at = ? WHERE claim_id = ? AND status = ?",
                    (entry.status.value, _ts(entry.at), claim_id, expected.value),
                )
            if result.rowcount == 0:
                return False
            self._insert_history(conn, claim_id, entry)
            return True

    def append_claim_message(self, claim_id: str, message: ClaimMessage) -> bool:
        with self._transaction() as conn:
            result = conn.execute(
                "UPDATE claims SET updated_at = ? WHERE claim_id = ?",
                (_ts(message.at), claim_id),
            )
            if result.rowcount == 0:
                return False
            conn.execute(
                "INSERT INTO claim_messages (claim_id, from_user, from_role, message, at) VALUES (?, ?, ?, ?, ?)",
                (claim_id, message.from_user, message.from_role.value, message.message, _ts(message.at)),
            )
            return True

    def append_claim_attachment(self, claim_id: str, attachment: Attachment) -> bool:
        with self._transaction() as conn:
            result = conn.execute(
                "UPDATE claims SET updated_at = ? WHERE claim_id = ?",
                (_ts(attachment.uploaded_at), claim_id),
            )
            if result.rowcount == 0:
                return False
            conn.execute(
                """
                INSERT INTO claim_attachments (claim_id, name, url, mime_type, size, uploaded_by, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claim_id,
                    attachment.name,
                    attachment.url,
                    attachment.mime_type,
                    attachment.size,
                    attachment.uploaded_by,
                    _ts(attachment.uploaded_at),
                ),
            )
            return True

    # =========================================================================
    # Notifications & audit
    # =========================================================================

    def add_notification(self, notification: Notification) -> Notification:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO notifications (
                    notification_id, recipient_id, type, title, message,
                    related_entity, is_read, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.notification_id,
                    notification.recipient_id,
                    notification.type.value,
                    notification.title,
                    notification.message,
                    notification.related_entity.model_dump_json() if notification.related_entity else None,
                    1 if notification.is_read else 0,
                    _ts(notification.created_at),
                ),
            )
        return notification

    def list_notifications(self, recipient_id: Optional[str] = None, limit: int = 100) -> List[Notification]:
        query = "SELECT * FROM notifications WHERE 1=1"
        params: list = []
        if recipient_id:
            query += " AND recipient_id = ?"
            params.append(recipient_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            Notification(
                notification_id=row["notification_id"],
                recipient_id=row["recipient_id"],
                type=row["type"],
                title=row["title"],
                message=row["message"],
                related_entity=json.loads(row["related_entity"]) if row["related_entity"] else None,
                is_read=bool(row["is_read"]),
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]

    def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO audit_log (
                    audit_id, actor_id, action, entity_type, entity_id,
                    before, after, metadata, at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.audit_id,
                    entry.actor_id,
                    entry.action.value,
                    entry.entity_type,
                    entry.entity_id,
                    _dumps(entry.before) if entry.before is not None else None,
                    _dumps(entry.after) if entry.after is not None else None,
                    _dumps(entry.metadata),
                    _ts(entry.at),
                ),
            )
        return entry

    def list_audit_entries(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> List[AuditEntry]:
        query = "SELECT * FROM audit_log WHERE 1=1"
        params: list = []
        if entity_type:
            query += " AND entity_type = ?"
            params.append(entity_type)
        if entity_id:
            query += " AND entity_id = ?"
            params.append(entity_id)
        query += " ORDER BY at"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            AuditEntry(
                audit_id=row["audit_id"],
                actor_id=row["actor_id"],
                action=row["action"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                before=json.loads(row["before"]) if row["before"] else None,
                after=json.loads(row["after"]) if row["after"] else None,
                metadata=json.loads(row["metadata"]),
                at=_dt(row["at"]),
            )
            for row in rows
        ]

    # =========================================================================
    # Row mapping
    # =========================================================================

    def _insert_history(self, conn: sqlite3.Connection, claim_id: str, entry: ClaimHistoryEntry):
        conn.execute(
            "INSERT INTO claim_history (claim_id, status, changed_by, note, at) VALUES (?, ?, ?, ?, ?)",
            (claim_id, entry.status.value, entry.changed_by, entry.note, _ts(entry.at)),
        )

    def _row_to_quote(self, row: sqlite3.Row) -> Quote:
        return Quote(
            quote_id=row["quote_id"],
            owner=row["owner"],
            vehicle_ref=row["vehicle_ref"],
            product_ref=row["product_ref"],
            selected_add_ons=json.loads(row["selected_add_ons"]),
            pricing_snapshot=json.loads(row["pricing_snapshot"]),
            breakdown=json.loads(row["breakdown"]),
            currency=row["currency"],
            status=row["status"],
            expires_at=_dt(row["expires_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_policy(self, row: sqlite3.Row) -> Policy:
        return Policy(
            policy_id=row["policy_id"],
            owner=row["owner"],
            vehicle_ref=row["vehicle_ref"],
            product_ref=row["product_ref"],
            quote_ref=row["quote_ref"],
            premium=row["premium"],
            status=row["status"],
            payment_status=row["payment_status"],
            payment_method=row["payment_method"],
            payment_date=_dt(row["payment_date"]),
            transaction_id=row["transaction_id"],
            start_date=_dt(row["start_date"]),
            end_date=_dt(row["end_date"]),
            document_refs=json.loads(row["document_refs"]),
            created_by=row["created_by"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        return Document(
            document_id=row["document_id"],
            number=row["number"],
            kind=row["kind"],
            policy_ref=row["policy_ref"],
            blob_location=row["blob_location"],
            byte_size=row["byte_size"],
            is_active=bool(row["is_active"]),
            generated_by=row["generated_by"],
            generated_at=_dt(row["generated_at"]),
            metadata=json.loads(row["metadata"]),
        )

    def _row_to_claim(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Claim:
        claim_id = row["claim_id"]
        history = [
            ClaimHistoryEntry(status=h["status"], changed_by=h["changed_by"], note=h["note"], at=_dt(h["at"]))
            for h in conn.execute(
                "SELECT * FROM claim_history WHERE claim_id = ? ORDER BY seq", (claim_id,)
            ).fetchall()
        ]
        messages = [
            ClaimMessage(from_user=m["from_user"], from_role=m["from_role"], message=m["message"], at=_dt(m["at"]))
            for m in conn.execute(
                "SELECT * FROM claim_messages WHERE claim_id = ? ORDER BY seq", (claim_id,)
            ).fetchall()
        ]
        attachments = [
            Attachment(
                name=a["name"],
                url=a["url"],
                mime_type=a["mime_type"],
                size=a["size"],
                uploaded_by=a["uploaded_by"],
                uploaded_at=_dt(a["uploaded_at"]),
            )
            for a in conn.execute(
                "SELECT * FROM claim_attachments WHERE claim_id = ? ORDER BY seq", (claim_id,)
            ).fetchall()
        ]
        return Claim(
            claim_id=claim_id,
            owner=row["owner"],
            policy_ref=row["policy_ref"],
            vehicle_ref=row["vehicle_ref"],
            status=row["status"],
            incident=json.loads(row["incident"]),
            expert_ref=row["expert_ref"],
            attachments=attachments,
            messages=messages,
            history=history,
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )


# =============================================================================
# Convenience Functions
# =============================================================================

@lru_cache
def get_lifecycle_store() -> LifecycleStore:
    """Get the default lifecycle store (singleton)."""
    store = LifecycleStore()
    logger.info(f"Using lifecycle database: {store.db_path.resolve()}")
    return store
