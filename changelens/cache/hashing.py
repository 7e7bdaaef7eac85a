"""
Hashing primitives for cache keys.

Keys are SHA-256 digests truncated to 16 hex characters (64 bits).
"""

import hashlib
import json
from typing import Any, Sequence

HASH_LENGTH = 16


def hash_string(data: str) -> str:
    return hashlib.sha256(data.encode('utf-8')).hexdigest()[:HASH_LENGTH]


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:HASH_LENGTH]


def compute_cache_key(*components: str) -> str:
    """Hash components joined with ``:``."""
    return hash_string(":".join(str(c) for c in components))


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def hash_content(data: Any) -> str:
    """Hash of the canonical JSON form of ``data``."""
    return hash_string(canonical_json(data))


def hash_file_patterns(includes: Sequence[str], excludes: Sequence[str]) -> str:
    """Order-independent hash of include/exclude globs."""
    return hash_content({'includes': sorted(includes), 'excludes': sorted(excludes)})
