"""
Poster / product metadata catalog.

Records live in a JSON list (one object per poster) at PRODUCT_METADATA_PATH:

  {"image_id": "poster_01", "product_name": "Sunrise Coffee", "category": "...",
   "tone": "friendly", "language": "en", "image_url": "https://...",
   "brand": "...", "price": 4.5, "currency": "USD",
   "features": ["..."], "description": "..."}

The file is read once, on first lookup. A missing or unreadable file yields
an empty catalog: scripts then fall back to the generic prompt.
"""

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ProductCatalog:
    def __init__(self, path: Optional[str] = None, records: Optional[list[dict]] = None):
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._records: Optional[dict[str, dict[str, Any]]] = None
        if records is not None:
            self._records = self._index(records)

    @staticmethod
    def _index(records: list[dict]) -> dict[str, dict[str, Any]]:
        return {str(r["image_id"]): r for r in records if isinstance(r, dict) and r.get("image_id")}

    def _load(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            if self._records is not None:
                return self._records

            records: list[dict] = []
            if self._path is not None and self._path.exists():
                try:
                    records = json.loads(self._path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    logger.error(f"Failed to load product metadata from {self._path}: {e}")
                    records = []
            elif self._path is not None:
                logger.info(f"No product metadata file at {self._path}")

            self._records = self._index(records if isinstance(records, list) else [])
            logger.info(f"Loaded {len(self._records)} poster record(s)")
            return self._records

    def get(self, image_id: Optional[str]) -> Optional[dict[str, Any]]:
        """Metadata for one poster, or None."""
        if not image_id:
            return None
        record = self._load().get(str(image_id))
        return dict(record) if record else None

    async def lookup(self, image_id: Optional[str]) -> Optional[dict[str, Any]]:
        """`get` for the event loop: the first load reads the file in a worker thread."""
        if self._records is None:
            await asyncio.to_thread(self._load)
        return self.get(image_id)

    def all(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._load().values()]

    def reload(self) -> None:
        """Forget the loaded records; the next lookup re-reads the file."""
        with self._lock:
            if self._path is not None:
                self._records = None
