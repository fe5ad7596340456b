"""
Local filesystem storage for rendered document bytes.
"""

import logging
from pathlib import Path
from typing import Optional

from ..utils.config import get_settings

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Writes document blobs under a base directory and returns their location."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir or get_settings().documents_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def put(self, name: str, data: bytes) -> str:
        """Persist ``data`` as ``name`` and return the blob location. Raises OSError on failure."""
        path = self.base_dir / name.replace("/", "-")
        path.write_bytes(data)
        logger.debug(f"Stored blob {path} ({len(data)} bytes)")
        return str(path)

    def get(self, location: str) -> bytes:
        return Path(location).read_bytes()

    def exists(self, location: str) -> bool:
        return Path(location).is_file()
