"""Per-invocation cache context."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .. import __version__
from ..config import ChangelensConfig
from ..git import GitOperations
from .changeset import ChangeSetCache
from .index import CacheIndex, IndexBatch, IndexDocument, RetentionPolicy
from .keys import CacheKeyEngine
from .paths import CachePaths
from .refs import RefResolutionCache
from .store import CacheStore

logger = logging.getLogger(__name__)


@dataclass
class CacheContext:
    """
    Everything the cache needs for one run, built once and passed around.

    No cache state lives at module level; two contexts never share memory.
    """
    config: ChangelensConfig
    git: GitOperations
    paths: CachePaths
    store: CacheStore
    index: CacheIndex
    keys: CacheKeyEngine
    refs: RefResolutionCache
    batch: IndexBatch = field(default_factory=IndexBatch)
    version: str = __version__

    @classmethod
    def create(cls, config: ChangelensConfig, git: GitOperations,
               root: Optional[str] = None, version: str = __version__) -> 'CacheContext':
        """
        Build a context rooted at ``root`` (the repository top level by default).

        Args:
            config: Resolved configuration
            git: Git runner of the repository
            root: Directory that relative state directories are resolved against
            version: Tool version folded into keys and entries
        """
        state_dir = Path(config.state_dir)
        if not state_dir.is_absolute():
            state_dir = Path(root or git.cwd) / state_dir
        paths = CachePaths(state_dir)
        if config.cache_enabled:
            paths.ensure_state_dir()
        store = CacheStore()
        batch = IndexBatch()
        policy = RetentionPolicy(
            max_entries_per_category=config.max_entries_per_category,
            max_changeset_entries=config.max_changeset_entries,
            max_size_bytes=config.max_cache_size_bytes,
            max_age_days=config.max_age_days,
        )
        return cls(
            config=config,
            git=git,
            paths=paths,
            store=store,
            index=CacheIndex(store, paths, policy),
            keys=CacheKeyEngine(version),
            refs=RefResolutionCache(git, store, paths, version, batch),
            batch=batch,
            version=version,
        )

    @property
    def enabled(self) -> bool:
        return self.config.cache_enabled

    @property
    def changesets(self) -> ChangeSetCache:
        return ChangeSetCache(self.store, self.paths, self.batch, self.version)

    def commit(self) -> Optional[IndexDocument]:
        """Apply the pending batch to the index and start a new one."""
        if not self.enabled or self.batch.is_empty():
            return None
        document = self.index.commit(self.batch)
        self.batch = IndexBatch()
        self.refs.batch = self.batch
        return document
