"""
Cache index: the catalogue of cache entries and its retention policy.

The index is a single JSON document. Entries are grouped by category
(``changeset``, ``per-analyzer:<name>``, ``git-refs``). Writers collect their
changes in an ``IndexBatch`` during a run and apply them with one
read-modify-write in ``CacheIndex.commit``. Separate processes are not
coordinated; the last index write wins.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set, Any, Callable, Iterable, Tuple

from ..exceptions import CacheError
from ..utils import format_file_size, utc_now_iso, parse_iso
from .paths import CachePaths, CHANGESET_CATEGORY, REFS_CATEGORY
from .store import CacheStore, TEMP_SUFFIX

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = "1.2"
PINNED_CATEGORIES = frozenset({REFS_CATEGORY})


@dataclass
class CacheEntryMeta:
    key: str
    category: str
    created_at: str
    last_accessed_at: str
    size_bytes: int
    cli_version: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'category': self.category,
            'createdAt': self.created_at,
            'lastAccessedAt': self.last_accessed_at,
            'sizeBytes': self.size_bytes,
            'cliVersion': self.cli_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntryMeta':
        return cls(
            key=str(data['key']),
            category=str(data['category']),
            created_at=str(data['createdAt']),
            last_accessed_at=str(data.get('lastAccessedAt') or data['createdAt']),
            size_bytes=int(data.get('sizeBytes', 0)),
            cli_version=str(data.get('cliVersion', '')),
        )


@dataclass
class IndexDocument:
    hits: int = 0
    misses: int = 0
    entries: Dict[str, List[CacheEntryMeta]] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def all_entries(self) -> List[CacheEntryMeta]:
        return [entry for entries in self.entries.values() for entry in entries]

    def total_size(self) -> int:
        return sum(entry.size_bytes for entry in self.all_entries())

    def find(self, category: str, key: str) -> Optional[CacheEntryMeta]:
        for entry in self.entries.get(category, []):
            if entry.key == key:
                return entry
        return None

    def remove(self, entry: CacheEntryMeta) -> None:
        entries = self.entries.get(entry.category, [])
        self.entries[entry.category] = [e for e in entries if e.key != entry.key]
        if not self.entries[entry.category]:
            del self.entries[entry.category]

    def upsert(self, entry: CacheEntryMeta) -> None:
        entries = [e for e in self.entries.get(entry.category, []) if e.key != entry.key]
        entries.append(entry)
        self.entries[entry.category] = entries

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schemaVersion': CACHE_SCHEMA_VERSION,
            'hits': self.hits,
            'misses': self.misses,
            'entries': {
                category: [entry.to_dict() for entry in entries]
                for category, entries in sorted(self.entries.items())
            },
            'updatedAt': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IndexDocument':
        entries: Dict[str, List[CacheEntryMeta]] = {}
        for category, items in (data.get('entries') or {}).items():
            entries[category] = [CacheEntryMeta.from_dict(item) for item in items]
        return cls(
            hits=int(data.get('hits', 0)),
            misses=int(data.get('misses', 0)),
            entries=entries,
            updated_at=data.get('updatedAt'),
        )


@dataclass
class IndexBatch:
    """Index changes gathered during one invocation."""
    pending: List[CacheEntryMeta] = field(default_factory=list)
    touched: Set[Tuple[str, str]] = field(default_factory=set)
    hits: int = 0
    misses: int = 0

    def record_hit(self, category: str, key: str) -> None:
        self.hits += 1
        self.touched.add((category, key))

    def record_miss(self) -> None:
        self.misses += 1

    def add(self, entry: CacheEntryMeta) -> None:
        self.pending.append(entry)

    def is_empty(self) -> bool:
        return not (self.pending or self.touched or self.hits or self.misses)


@dataclass
class RetentionPolicy:
    max_entries_per_category: int = 2
    max_changeset_entries: int = 2
    max_size_bytes: int = 100 * 1024 * 1024
    max_age_days: int = 30

    def category_limit(self, category: str) -> Optional[int]:
        if category in PINNED_CATEGORIES:
            return None
        if category == CHANGESET_CATEGORY:
            return self.max_changeset_entries
        return self.max_entries_per_category


class CacheIndex:
    """Reads, updates and enforces retention on the cache index."""

    def __init__(self, store: CacheStore, paths: CachePaths,
                 policy: Optional[RetentionPolicy] = None,
                 clock: Callable[[], str] = utc_now_iso):
        self.store = store
        self.paths = paths
        self.policy = policy or RetentionPolicy()
        self.clock = clock

    def read(self) -> IndexDocument:
        """
        Load the index.

        A missing, unreadable or outdated index is treated as empty; it is
        never migrated in part.
        """
        data = self.store.read_json(self.paths.index_path)
        if not isinstance(data, dict):
            return IndexDocument()
        if data.get('schemaVersion') != CACHE_SCHEMA_VERSION:
            logger.debug(f"Cache index schema {data.get('schemaVersion')!r} is outdated, starting fresh")
            return IndexDocument()
        try:
            return IndexDocument.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug(f"Cache index is malformed, starting fresh: {e}")
            return IndexDocument()

    def write(self, document: IndexDocument) -> bool:
        document.updated_at = self.clock()
        try:
            self.store.write_json(self.paths.index_path, document.to_dict())
            return True
        except CacheError as e:
            logger.warning(f"Could not update cache index: {e}")
            return False

    def commit(self, batch: IndexBatch) -> IndexDocument:
        """
        Apply a batch with a single read-modify-write.

        Hit/miss counters are added, pending entries are merged, accessed
        entries are touched, then the per-category caps, the age limit and
        the size limit are enforced in that order.
        """
        document = self.read()
        if batch.is_empty():
            return document

        now = self.clock()
        document.hits += batch.hits
        document.misses += batch.misses

        for entry in batch.pending:
            document.upsert(entry)

        for category, key in batch.touched:
            entry = document.find(category, key)
            if entry is not None:
                entry.last_accessed_at = now

        for category in {entry.category for entry in batch.pending}:
            self.enforce_category_limit(document, category)
        self.expire(document, now=parse_iso(now))
        self.evict_to_size(document)

        self.write(document)
        logger.debug(f"Cache index updated: +{batch.hits} hits, +{batch.misses} misses, "
                     f"{len(batch.pending)} new entries")
        return document

    def _evict(self, document: IndexDocument, entry: CacheEntryMeta) -> None:
        # index entry first, then the file it describes
        document.remove(entry)
        try:
            self.store.delete(self.paths.entry_path(entry.category, entry.key))
        except ValueError as e:
            logger.debug(f"Evicted entry without a known file: {e}")

    def enforce_category_limit(self, document: IndexDocument, category: str) -> List[CacheEntryMeta]:
        """Keep the newest-by-creation entries of ``category`` up to its limit."""
        limit = self.policy.category_limit(category)
        entries = document.entries.get(category, [])
        if limit is None or len(entries) <= limit:
            return []
        ordered = sorted(entries, key=lambda e: e.created_at, reverse=True)
        evicted = ordered[limit:]
        for entry in evicted:
            self._evict(document, entry)
        if evicted:
            logger.debug(f"Evicted {len(evicted)} entries from {category}")
        return evicted

    def evict_to_size(self, document: IndexDocument,
                      max_size_bytes: Optional[int] = None) -> List[CacheEntryMeta]:
        """Evict least-recently-accessed entries until the total fits the budget."""
        budget = self.policy.max_size_bytes if max_size_bytes is None else max_size_bytes
        total = document.total_size()
        if total <= budget:
            return []

        candidates = sorted(
            (e for e in document.all_entries() if e.category not in PINNED_CATEGORIES),
            key=lambda e: e.last_accessed_at,
        )
        evicted = []
        for entry in candidates:
            if total <= budget:
                break
            self._evict(document, entry)
            total -= entry.size_bytes
            evicted.append(entry)
        logger.debug(f"Size eviction removed {len(evicted)} entries, {format_file_size(total)} remain")
        return evicted

    def expire(self, document: IndexDocument, max_age_days: Optional[int] = None,
               now: Optional[datetime] = None) -> List[CacheEntryMeta]:
        """Evict entries created more than ``max_age_days`` before ``now``."""
        days = self.policy.max_age_days if max_age_days is None else max_age_days
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        expired = []
        for entry in document.all_entries():
            created = parse_iso(entry.created_at)
            if created is None or created < cutoff:
                self._evict(document, entry)
                expired.append(entry)
        if expired:
            logger.debug(f"Expired {len(expired)} entries older than {days} days")
        return expired

    def prune(self, max_age_days: Optional[int] = None) -> int:
        """
        Remove entries created more than ``max_age_days`` ago.

        Returns:
            Number of removed entries
        """
        days = self.policy.max_age_days if max_age_days is None else max_age_days
        document = self.read()
        removed = len(self.expire(document, days))
        if removed:
            self.write(document)
        logger.info(f"Pruned {removed} cache entries older than {days} days")
        return removed

    def cleanup_orphans(self, document: Optional[IndexDocument] = None,
                        pending: Iterable[CacheEntryMeta] = ()) -> int:
        """
        Delete cache files that no index entry refers to.

        Covers the changeset and per-analyzer directories, including temp
        files left behind by interrupted writes. Files of ``pending`` entries
        (written this run, not yet committed) are kept.

        Returns:
            Number of deleted files
        """
        document = document if document is not None else self.read()
        expected: Set[Path] = set()
        for entry in list(document.all_entries()) + list(pending):
            try:
                expected.add(self.paths.entry_path(entry.category, entry.key))
            except ValueError:
                continue

        removed = 0
        for directory in (self.paths.changeset_dir, self.paths.analyzer_dir):
            for path in self.store.list_files(directory):
                if path in expected and not path.name.endswith(TEMP_SUFFIX):
                    continue
                if self.store.delete(path):
                    removed += 1
        if removed:
            logger.debug(f"Removed {removed} orphaned cache files")
        return removed

    def stats(self) -> Dict[str, Any]:
        """Counters and size information for display."""
        document = self.read()
        entries = document.all_entries()
        total_requests = document.hits + document.misses
        created = sorted(e.created_at for e in entries)
        size = document.total_size()
        return {
            'hits': document.hits,
            'misses': document.misses,
            'hitRate': round(document.hits / total_requests * 100, 1) if total_requests else 0.0,
            'entries': len(entries),
            'entriesByCategory': {c: len(e) for c, e in sorted(document.entries.items())},
            'sizeBytes': size,
            'sizeHuman': format_file_size(size),
            'oldestEntry': created[0] if created else None,
            'newestEntry': created[-1] if created else None,
        }

    def clear(self) -> int:
        """
        Delete the whole cache directory.

        Returns:
            Number of index entries that were present
        """
        count = len(self.read().all_entries())
        if self.paths.cache_dir.exists():
            try:
                shutil.rmtree(self.paths.cache_dir)
            except OSError as e:
                raise CacheError(f"Failed to clear cache at {self.paths.cache_dir}: {e}")
        logger.info(f"Cleared {count} cache entries")
        return count
