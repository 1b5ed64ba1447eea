from __future__ import annotations
import logging
import re
import time
from pathlib import Path

from config import settings

logger = logging.getLogger("uvicorn.error")

UPLOAD_ROUTE = "/uploads"


def safe_filename(name: str) -> str:
    name = Path(name or "file").name
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._") or "file"


class LocalBlobStorage:
    """Stores uploaded files on disk and hands back their public URL."""

    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def save(self, folder: str, filename: str, data: bytes) -> str:
        key = f"{safe_filename(folder)}/{int(time.time() * 1000)}_{safe_filename(filename)}"
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Stored upload {key} ({len(data)} bytes)")
        return f"{self.base_url}{UPLOAD_ROUTE}/{key}"


def get_blob_storage() -> LocalBlobStorage:
    return LocalBlobStorage(settings.UPLOAD_DIR, settings.PUBLIC_BASE_URL)
