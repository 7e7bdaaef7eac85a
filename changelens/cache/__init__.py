"""
Content-addressed result cache for changelens.

Documents live under ``<state_dir>/cache``::

    index.json                       catalogue of entries
    git/refs.json                    ref resolution cache
    changeset/<key>.json             structured changesets
    per-analyzer/<name>_<key>.json   analyzer findings
"""

from .analyzer import run_analyzer_with_cache, run_analyzers_with_cache
from .changeset import ChangeSetCache
from .context import CacheContext
from .hashing import hash_string, compute_cache_key, hash_content, hash_file_patterns
from .index import (
    CacheIndex, CacheEntryMeta, IndexBatch, IndexDocument, RetentionPolicy,
    CACHE_SCHEMA_VERSION, PINNED_CATEGORIES
)
from .keys import CacheKeyEngine
from .paths import CachePaths, safe_name, analyzer_category
from .refs import RefResolutionCache
from .store import CacheStore

__all__ = [
    'run_analyzer_with_cache', 'run_analyzers_with_cache', 'ChangeSetCache',
    'CacheContext', 'hash_string', 'compute_cache_key', 'hash_content',
    'hash_file_patterns', 'CacheIndex', 'CacheEntryMeta', 'IndexBatch',
    'IndexDocument', 'RetentionPolicy', 'CACHE_SCHEMA_VERSION',
    'PINNED_CATEGORIES', 'CacheKeyEngine', 'CachePaths', 'safe_name',
    'analyzer_category', 'RefResolutionCache', 'CacheStore',
]
