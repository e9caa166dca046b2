# -*- coding: utf-8 -*-
"""
Content-addressable attachment store.

Attachments are named by their SHA-256 hash, so storing the same bytes
twice keeps a single copy.
"""

import hashlib
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from utils.logger import get_logger

logger = get_logger(__name__)


def compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class AttachmentStore(ABC):
    """Opaque content-addressable blob store."""

    @abstractmethod
    def store(self, data: bytes) -> str:
        """Store bytes and return their content hash."""

    @abstractmethod
    def exists(self, content_hash: str) -> bool:
        """Return True if an object with this hash is stored."""

    @abstractmethod
    def read(self, content_hash: str) -> Optional[bytes]:
        """Return stored bytes, or None if absent."""


class FileSystemAttachmentStore(AttachmentStore):
    """
    Stores attachments under ``root/ab/cd/abcd...`` (two-level fan-out).
    """

    def __init__(self, root: Optional[Path] = None):
        if root is None:
            from app.config import Config
            root = Config.ATTACHMENT_STORE_PATH
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, content_hash: str) -> Path:
        content_hash = content_hash.lower()
        return self.root / content_hash[:2] / content_hash[2:4] / content_hash

    def store(self, data: bytes) -> str:
        content_hash = compute_sha256(data)
        target = self._path_for(content_hash)
        if target.exists():
            return content_hash

        target.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a partial file
        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except OSError:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

        logger.debug(f"Stored attachment {content_hash} ({len(data)} bytes)")
        return content_hash

    def exists(self, content_hash: str) -> bool:
        if not content_hash:
            return False
        return self._path_for(content_hash).exists()

    def read(self, content_hash: str) -> Optional[bytes]:
        path = self._path_for(content_hash)
        if not path.exists():
            return None
        return path.read_bytes()
