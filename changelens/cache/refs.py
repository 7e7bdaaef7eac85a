"""
Ref resolution cache.

Maps ref names to commit ids. The whole document is tied to the HEAD commit
it was written under and is discarded as soon as HEAD moves.
"""

import logging
from typing import Optional, Dict, Any

from ..exceptions import CacheError
from ..git import GitOperations
from ..utils import utc_now_iso
from .index import IndexBatch, CacheEntryMeta
from .paths import CachePaths, REFS_CATEGORY
from .store import CacheStore

logger = logging.getLogger(__name__)

REFS_SCHEMA_VERSION = "1.0"
REFS_KEY = "refs"


class RefResolutionCache:
    """Caches ``git rev-parse`` results for the current HEAD."""

    def __init__(self, git: GitOperations, store: CacheStore, paths: CachePaths,
                 version: str = "", batch: Optional[IndexBatch] = None):
        self.git = git
        self.store = store
        self.paths = paths
        self.version = version
        self.batch = batch

    def _load(self, head: Optional[str]) -> Optional[Dict[str, Any]]:
        """The stored document if it is current for ``head``."""
        data = self.store.read_json(self.paths.refs_path)
        if not isinstance(data, dict) or data.get('schemaVersion') != REFS_SCHEMA_VERSION:
            return None
        if not head or data.get('headSha') != head or not isinstance(data.get('refs'), dict):
            return None
        return data

    def _save(self, document: Dict[str, Any]) -> None:
        now = utc_now_iso()
        document['updatedAt'] = now
        try:
            size = self.store.write_json(self.paths.refs_path, document)
        except CacheError as e:
            logger.debug(f"Ref cache not written: {e}")
            return
        if self.batch is not None:
            self.batch.add(CacheEntryMeta(REFS_KEY, REFS_CATEGORY, now, now, size, self.version))

    async def resolve(self, ref: str) -> Optional[str]:
        """
        Resolve ``ref`` to a commit id.

        Returns:
            The commit id, or None if the ref does not exist
        """
        head = await self.git.head_sha()
        document = self._load(head)

        cached = (document or {}).get('refs', {}).get(ref)
        if isinstance(cached, dict) and cached.get('sha'):
            logger.debug(f"Ref cache hit for {ref}")
            if self.batch is not None:
                self.batch.touched.add((REFS_CATEGORY, REFS_KEY))
            return cached['sha']

        sha = await self.git.rev_parse(ref)
        if sha is None:
            return None

        if head:
            if document is None:
                document = {'schemaVersion': REFS_SCHEMA_VERSION, 'headSha': head, 'refs': {}}
            document['refs'][ref] = {'sha': sha, 'resolvedAt': utc_now_iso()}
            self._save(document)
        return sha

    async def exists(self, ref: str) -> bool:
        return await self.resolve(ref) is not None

    def clear(self) -> bool:
        return self.store.delete(self.paths.refs_path)
