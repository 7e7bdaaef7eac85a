"""
Cache key computation.

Consumers that declare a ``CacheRelevance`` get content-scoped keys: only the
diffs matching their globs are hashed, so unrelated edits keep the key
stable. Consumers without one fall back to a key over the whole changeset.
Every key folds in the tool version.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Sequence, List, TYPE_CHECKING

from ..diff import DiffDocument, DiffFile, filter_by_relevance
from ..exceptions import GitOperationError
from ..git import GitOperations, DiffMode, parse_status_porcelain
from .hashing import hash_string, compute_cache_key, hash_file_patterns, hash_content

if TYPE_CHECKING:
    from ..analysis import CacheRelevance
    from ..changeset import DiffOptions
    from .refs import RefResolutionCache

logger = logging.getLogger(__name__)

# separators that cannot occur in git paths or diff lines
FIELD_SEP = "\x00"
FILE_SEP = "\x01"
HUNK_SEP = "\x02"
LINE_SEP = "\x03"
PART_SEP = "\x04"


def serialize_file(diff: DiffFile) -> str:
    """Canonical form of one file's diff: path, status, and per hunk the header, added and removed lines."""
    hunks = []
    for hunk in diff.hunks or []:
        hunks.append(PART_SEP.join([
            hunk.header,
            LINE_SEP.join(hunk.added),
            LINE_SEP.join(hunk.removed),
        ]))
    fields = [diff.path, diff.old_path or "", diff.status.value, HUNK_SEP.join(hunks)]
    if diff.hunks is None and diff.stats is not None:
        fields.append(f"{diff.stats.get('added', 0)}/{diff.stats.get('removed', 0)}")
    return FIELD_SEP.join(fields)


class CacheKeyEngine:
    """Computes deterministic cache keys for one tool version."""

    def __init__(self, version: str):
        self.version = version

    def content_hash(self, files: Sequence[DiffFile],
                     include_globs: Sequence[str] = (),
                     exclude_globs: Sequence[str] = ()) -> str:
        relevant = filter_by_relevance(files, include_globs, exclude_globs)
        relevant = sorted(relevant, key=lambda f: (f.path, f.old_path or ""))
        return hash_string(FILE_SEP.join(serialize_file(f) for f in relevant))

    def document_signature(self, document: DiffDocument) -> str:
        """Signature of a complete structured changeset, skipped files included."""
        skipped = sorted((s.path, s.reason.value) for s in document.skipped)
        return compute_cache_key(
            self.content_hash(document.files),
            hash_content(skipped),
            document.mode or "",
            document.base or "",
            document.head or "",
        )

    def consumer_key(self, name: str, document: DiffDocument,
                     relevance: Optional['CacheRelevance'] = None,
                     changeset_key: Optional[str] = None) -> str:
        """
        Key for one consumer's results over ``document``.

        Args:
            name: Consumer name
            document: The structured changeset
            relevance: Declared globs, or None for the whole-changeset fallback
            changeset_key: Changeset key to use for the fallback, when known
        """
        if relevance is not None:
            content = self.content_hash(document.files, relevance.include_globs,
                                        relevance.exclude_globs)
            return compute_cache_key(name, content, self.version)
        signature = changeset_key or self.document_signature(document)
        return compute_cache_key(signature, name, self.version)

    async def worktree_signature(self, git: GitOperations) -> str:
        """
        Signature of the working tree and index state.

        Combines the porcelain status, the index tree and HEAD with the size
        and mtime of every path git reports as changed, so further edits to
        an already modified file change the signature too.
        """
        status, tree, head = await asyncio.gather(
            git.status_porcelain(), git.write_tree(), git.head_sha()
        )
        try:
            root = Path(await git.repo_root())
        except GitOperationError as e:
            logger.debug(f"Could not determine repository root: {e}")
            root = Path(git.cwd)

        fingerprints: List[str] = []
        for path in sorted(set(parse_status_porcelain(status))):
            try:
                st = os.stat(root / path)
                fingerprints.append(f"{path}:{st.st_size}:{st.st_mtime_ns}")
            except OSError:
                fingerprints.append(f"{path}:missing")

        return compute_cache_key(
            hash_string(status),
            tree or "",
            head or "",
            hash_string("\n".join(fingerprints)),
        )

    def options_hash(self, options: 'DiffOptions') -> str:
        return hash_content({
            'patterns': hash_file_patterns(options.include, options.exclude),
            'unified': options.unified,
            'untracked': options.lists_untracked,
            'patchFor': options.patch_for,
            'nameOnly': options.name_only,
            'statOnly': options.stat_only,
            'maxFileChars': options.max_file_chars,
        })

    async def changeset_key(self, options: 'DiffOptions', git: GitOperations,
                            refs: Optional['RefResolutionCache'] = None) -> str:
        """
        Key for the structured changeset described by ``options``.

        Branch mode resolves both refs to commit ids, through the ref cache
        when one is given. Other modes use the worktree signature.
        """
        components = ["changeset", options.mode.value, self.version, self.options_hash(options)]
        if options.mode is DiffMode.BRANCH:
            resolve = refs.resolve if refs is not None else git.rev_parse
            # sequential: both resolutions update the same refs document
            base_sha = await resolve(options.base)
            head_sha = await resolve(options.head)
            components += [base_sha or options.base, head_sha or options.head]
        else:
            components.append(await self.worktree_signature(git))
        return compute_cache_key(*components)
