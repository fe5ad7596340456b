"""
Storage module for persisting lifecycle records and document blobs.

Provides SQLite-based storage for:
- Sequence counters
- Vehicles, products and quotes
- Policies and their documents
- Claims with their append-only history, messages and attachments
- Notifications and audit entries
"""

from .blob_store import LocalBlobStore
from .lifecycle_store import (
    LifecycleStore,
    get_lifecycle_store,
)

__all__ = [
    "LifecycleStore",
    "LocalBlobStore",
    "get_lifecycle_store",
]
