"""
Path filtering for changed files.

Glob patterns use git's wildmatch rules (via ``pathspec``): ``**`` crosses
directory boundaries and a pattern without a slash matches at any depth.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Iterable, Callable, TypeVar, Optional, Sequence

import pathspec

from .models import FileEntry, SkippedEntry, SkipReason

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_EXCLUDES = (
    # lockfiles
    "**/pnpm-lock.yaml",
    "**/package-lock.json",
    "**/yarn.lock",
    "**/bun.lockb",
    # generated type declarations
    "**/*.d.ts",
    # logs
    "**/*.log",
    "**/*.logs",
    # build output and tool caches
    "**/dist/**",
    "**/build/**",
    "**/.svelte-kit/**",
    "**/.next/**",
    "**/.turbo/**",
    "**/coverage/**",
    "**/.cache/**",
    # minified bundles and source maps
    "**/*.min.*",
    "**/*.map",
)


class GlobMatcher:
    """Matches repository-relative paths against a list of glob patterns."""

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns = [p for p in (patterns or ()) if p and p.strip()]
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def matches(self, path: str) -> bool:
        if not self.patterns:
            return False
        return self._spec.match_file(path.replace("\\", "/"))


@dataclass
class FilterResult:
    included: List[FileEntry] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)


def filter_paths(files: Iterable[FileEntry],
                 include_globs: Sequence[str] = (),
                 exclude_globs: Sequence[str] = (),
                 default_excludes: Sequence[str] = DEFAULT_EXCLUDES) -> FilterResult:
    """
    Partition changed files into included and skipped.

    Precedence, highest first:
        1. an explicit exclude glob match skips as ``excluded-by-glob``;
        2. with include globs, a file must match one of them or it is skipped
           as ``not-included``; a match bypasses the default excludes;
        3. without include globs, a default-exclude match skips as
           ``excluded-by-default``;
        4. anything else is included.

    Args:
        files: Candidate files
        include_globs: Patterns a file must match when non-empty
        exclude_globs: Patterns that always exclude
        default_excludes: Built-in noise patterns

    Returns:
        FilterResult with included files sorted by path
    """
    include = GlobMatcher(include_globs)
    exclude = GlobMatcher(exclude_globs)
    defaults = GlobMatcher(default_excludes)
    result = FilterResult()

    for entry in files:
        if exclude.matches(entry.path):
            result.skipped.append(SkippedEntry(entry.path, SkipReason.EXCLUDED_BY_GLOB, entry.status))
        elif include:
            if include.matches(entry.path):
                result.included.append(entry)
            else:
                result.skipped.append(SkippedEntry(entry.path, SkipReason.NOT_INCLUDED, entry.status))
        elif defaults.matches(entry.path):
            result.skipped.append(SkippedEntry(entry.path, SkipReason.EXCLUDED_BY_DEFAULT, entry.status))
        else:
            result.included.append(entry)

    result.included.sort(key=lambda e: e.path)
    logger.debug(f"Path filter: {len(result.included)} included, {len(result.skipped)} skipped")
    return result


def filter_by_relevance(items: Iterable[T],
                        include_globs: Sequence[str] = (),
                        exclude_globs: Sequence[str] = (),
                        key: Callable[[T], str] = lambda item: item.path) -> List[T]:
    """Keep the items relevant to a consumer; same precedence as filter_paths without default excludes."""
    include = GlobMatcher(include_globs)
    exclude = GlobMatcher(exclude_globs)
    kept = []
    for item in items:
        path = key(item)
        if exclude.matches(path):
            continue
        if include and not include.matches(path):
            continue
        kept.append(item)
    return kept
