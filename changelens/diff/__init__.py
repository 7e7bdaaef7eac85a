"""
Diff structuring for changelens.

Models for changed files, hunks and lines, together with the pure helpers that
parse git output, filter paths, resolve patch targets and plan chunks.
"""

from .models import (
    FileStatus, LineKind, SkipReason, FileEntry, DiffLine, DiffHunk,
    SkippedEntry, DiffFile, DiffDocument, DOCUMENT_SCHEMA_VERSION
)
from .parser import (
    parse_hunk_header, parse_diff_into_hunks, split_full_diff,
    index_split_entries, parse_name_status, parse_numstat, parse_ls_files,
    count_line_stats, SplitDiffEntry, NumstatEntry
)
from .filters import (
    DEFAULT_EXCLUDES, FilterResult, GlobMatcher, filter_paths, filter_by_relevance
)
from .targets import PatchTarget, normalize_selector, path_in_directory, resolve_patch_targets
from .chunking import chunk_by_budget, render_chunk_text

__all__ = [
    'FileStatus', 'LineKind', 'SkipReason', 'FileEntry', 'DiffLine', 'DiffHunk',
    'SkippedEntry', 'DiffFile', 'DiffDocument', 'DOCUMENT_SCHEMA_VERSION',
    'parse_hunk_header', 'parse_diff_into_hunks', 'split_full_diff',
    'index_split_entries', 'parse_name_status', 'parse_numstat', 'parse_ls_files',
    'count_line_stats', 'SplitDiffEntry', 'NumstatEntry',
    'DEFAULT_EXCLUDES', 'FilterResult', 'GlobMatcher', 'filter_paths',
    'filter_by_relevance', 'PatchTarget', 'normalize_selector',
    'path_in_directory', 'resolve_patch_targets', 'chunk_by_budget',
    'render_chunk_text',
]
