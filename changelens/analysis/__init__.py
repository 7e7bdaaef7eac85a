"""
Consumer contract for structured changesets.

An ``Analyzer`` reads a ``DiffDocument`` and returns ``Finding`` values. The
cache layer stores findings as opaque tagged payloads; it never looks inside
``data``.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..diff import DiffDocument, filter_by_relevance
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheRelevance:
    """
    Globs describing which files an analyzer's output depends on.

    Declaring relevance opts the analyzer into content-scoped cache keys.
    """
    include_globs: Tuple[str, ...] = ()
    exclude_globs: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'include_globs', tuple(self.include_globs))
        object.__setattr__(self, 'exclude_globs', tuple(self.exclude_globs))


@dataclass
class Finding:
    """A tagged analyzer result."""
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'data': self.data}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'Finding':
        """
        Raises:
            ValidationError: If the payload is not a tagged finding
        """
        if not isinstance(payload, dict) or not isinstance(payload.get('kind'), str):
            raise ValidationError(f"Malformed finding payload: {payload!r}")
        data = payload.get('data', {})
        if not isinstance(data, dict):
            raise ValidationError(f"Finding data must be an object, got {type(data).__name__}")
        return cls(kind=payload['kind'], data=data)


class Analyzer:
    """Base class for changeset consumers."""

    name: str = "analyzer"
    cache: Optional[CacheRelevance] = None

    async def analyze(self, document: DiffDocument) -> List[Finding]:
        raise NotImplementedError


class FileSummaryAnalyzer(Analyzer):
    """Counts included files by status. Depends on the whole changeset."""

    name = "file-summary"

    async def analyze(self, document: DiffDocument) -> List[Finding]:
        counts = Counter(f.status.value for f in document.files)
        added = sum((f.stats or {}).get('added', 0) for f in document.files)
        removed = sum((f.stats or {}).get('removed', 0) for f in document.files)
        return [Finding('file-summary', {
            'byStatus': dict(sorted(counts.items())),
            'linesAdded': added,
            'linesRemoved': removed,
            'skipped': len(document.skipped),
        })]


class PathActivityAnalyzer(Analyzer):
    """Reports changed line counts for files under the configured globs."""

    def __init__(self, name: str, include_globs: Sequence[str], exclude_globs: Sequence[str] = ()):
        self.name = name
        self.cache = CacheRelevance(tuple(include_globs), tuple(exclude_globs))

    async def analyze(self, document: DiffDocument) -> List[Finding]:
        findings = []
        for diff in filter_by_relevance(document.files, self.cache.include_globs,
                                        self.cache.exclude_globs):
            stats = diff.stats or {}
            findings.append(Finding('path-activity', {
                'path': diff.path,
                'added': stats.get('added', 0),
                'removed': stats.get('removed', 0),
                'hunks': len(diff.hunks or []),
            }))
        return findings
