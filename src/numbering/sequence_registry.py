"""
Sequence registry for official document numbers.

Every document number comes from a durable per-key counter keyed
``{KIND}_{YEAR}``. The increment is delegated to the store, which commits
it before the value is returned, so a failed call never consumes a number.
Numbers handed out for documents that are later abandoned stay consumed.
"""

import logging
import re
import sqlite3
from datetime import datetime
from typing import Callable, Optional

from ..lifecycle.errors import RegistryFailure
from ..lifecycle.schema import DocumentKind, utc_now
from ..storage.lifecycle_store import LifecycleStore

logger = logging.getLogger(__name__)


# Two-letter prefix printed on each kind of document
PREFIXES = {
    DocumentKind.ATTESTATION: "AT",
    DocumentKind.CONTRACT: "CT",
    DocumentKind.RECEIPT: "RC",
    DocumentKind.AMENDMENT: "AM",
    DocumentKind.CANCELLATION: "CN",
}

NUMBER_PATTERN = re.compile(r"^[A-Z]{2}-\d{4}-\d{6}$")


def counter_key(kind: DocumentKind, year: int) -> str:
    """Counter key for a document kind and year, e.g. ``ATTESTATION_2026``."""
    return f"{kind.value}_{year}"


def format_document_number(kind: DocumentKind, year: int, value: int) -> str:
    """Format ``AT-2026-000001``."""
    return f"{PREFIXES[kind]}-{year:04d}-{value:06d}"


def is_valid_document_number(number: str) -> bool:
    return bool(NUMBER_PATTERN.match(number))


class SequenceRegistry:
    """
    Durable, strictly increasing counters backed by the lifecycle store.

    Usage:
        registry = SequenceRegistry(store)
        registry.next("ATTESTATION_2026")                  # -> 1, 2, 3 ...
        registry.next_document_number(DocumentKind.RECEIPT)  # -> "RC-2026-000001"
    """

    def __init__(self, store: LifecycleStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    def next(self, key: str) -> int:
        """Claim the next value for ``key``. Raises RegistryFailure if nothing was committed."""
        try:
            return self.store.increment_counter(key)
        except sqlite3.Error as e:
            logger.error(f"Counter increment failed for {key}: {e}")
            raise RegistryFailure(f"Could not increment counter {key}: {e}") from e

    def next_document_number(self, kind: DocumentKind) -> str:
        """Claim a number for ``kind`` in the current wall-clock year."""
        year = self.clock().year
        value = self.next(counter_key(kind, year))
        return format_document_number(kind, year, value)

    def current(self, kind: DocumentKind, year: Optional[int] = None) -> int:
        """Last value handed out for ``kind`` in ``year`` (0 if none)."""
        return self.store.get_counter(counter_key(kind, year or self.clock().year))
