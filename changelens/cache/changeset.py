"""Cache of structured changeset documents."""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..diff import DiffDocument
from ..exceptions import CacheError
from ..utils import utc_now_iso
from .index import CacheEntryMeta, IndexBatch, CACHE_SCHEMA_VERSION
from .paths import CachePaths, CHANGESET_CATEGORY
from .store import CacheStore

logger = logging.getLogger(__name__)


class ChangeSetCache:
    """Loads and saves ``DiffDocument`` values under changeset keys."""

    def __init__(self, store: CacheStore, paths: CachePaths, batch: IndexBatch, version: str):
        self.store = store
        self.paths = paths
        self.batch = batch
        self.version = version

    def load(self, key: str) -> Optional[DiffDocument]:
        """
        Load a cached document.

        Returns:
            The document, or None on a miss, an outdated document or a
            document that cannot be read
        """
        data = self.store.read_json(self.paths.changeset_path(key))
        if not isinstance(data, dict):
            return None
        if data.get('schemaVersion') != CACHE_SCHEMA_VERSION or data.get('cliVersion') != self.version:
            logger.debug(f"Discarding changeset cache entry {key}: version mismatch")
            return None
        try:
            document = DiffDocument.from_dict(data['document'])
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Discarding malformed changeset cache entry {key}: {e}")
            return None
        self.batch.record_hit(CHANGESET_CATEGORY, key)
        return document

    def save(self, key: str, document: DiffDocument,
             metadata: Optional[Dict[str, Any]] = None) -> bool:
        now = utc_now_iso()
        payload = {
            'schemaVersion': CACHE_SCHEMA_VERSION,
            'cliVersion': self.version,
            'key': key,
            'createdAt': now,
            'metadata': metadata or {},
            'document': document.to_dict(),
        }
        try:
            size = self.store.write_json(self.paths.changeset_path(key), payload)
        except CacheError as e:
            logger.warning(f"Could not cache changeset: {e}")
            return False
        self.batch.add(CacheEntryMeta(key, CHANGESET_CATEGORY, now, now, size, self.version))
        return True

    async def get_or_collect(self, key: str, collect: Callable[[], Awaitable[DiffDocument]],
                             metadata: Optional[Dict[str, Any]] = None) -> DiffDocument:
        cached = self.load(key)
        if cached is not None:
            logger.debug(f"Changeset cache hit: {key}")
            return cached
        self.batch.record_miss()
        document = await collect()
        self.save(key, document, metadata)
        return document
