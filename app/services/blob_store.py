"""
Local-disk blob store for uploaded artifacts
Files live under <root>/<category>/<handle> and are served from /uploads
"""

import logging
import secrets
import time
from pathlib import Path
from typing import List, Optional

from app.config import UPLOAD_DIR, PUBLIC_BASE_URL

logger = logging.getLogger(__name__)

REPORTS = "reports"


class LocalBlobStore:
    """Path-addressable blob storage reachable by URL"""

    def __init__(self, root_dir: str = UPLOAD_DIR, public_base_url: str = PUBLIC_BASE_URL):
        self.root = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, handle: str, category: str) -> Path:
        # Handles are generated names; refuse anything that could escape the category dir
        if not handle or "/" in handle or "\\" in handle or handle.startswith("."):
            raise ValueError(f"Invalid blob handle: {handle!r}")
        return self.root / category / handle

    def new_handle(self, filename: str) -> str:
        """Fresh collision-resistant handle keeping the upload's extension"""
        suffix = Path(filename or "").suffix.lower()
        return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{suffix}"

    def write(self, handle: str, data: bytes, category: str = REPORTS):
        """Write bytes under handle; a partially written file is removed on failure"""
        path = self._path(handle, category)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store blob {category}/{handle}: {e}")
            path.unlink(missing_ok=True)
            raise
        logger.info(f"Stored blob {category}/{handle} ({len(data)} bytes)")

    def save(self, data: bytes, filename: str, category: str = REPORTS) -> str:
        """Store bytes under a fresh handle and return it"""
        handle = self.new_handle(filename)
        self.write(handle, data, category)
        return handle

    def exists(self, handle: str, category: str = REPORTS) -> bool:
        path = self._path(handle, category)
        return path.is_file()

    def delete(self, handle: str, category: str = REPORTS) -> bool:
        """Remove a blob; returns False when it was already gone"""
        path = self._path(handle, category)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Blob {category}/{handle} does not exist")
            return False
        logger.info(f"Deleted blob {category}/{handle}")
        return True

    def list(self, category: str = REPORTS) -> List[str]:
        directory = self.root / category
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    def url_for(self, handle: str, category: str = REPORTS) -> Optional[str]:
        """Externally resolvable URL for a stored handle"""
        if not handle:
            return None
        if handle.startswith("http"):
            return handle
        return f"{self.public_base_url}/uploads/{category}/{handle}"


_default_store = LocalBlobStore()


def get_blob_store() -> LocalBlobStore:
    """Dependency returning the configured blob store"""
    return _default_store
