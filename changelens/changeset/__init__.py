"""
Changeset collection for changelens.

``DiffCollector`` turns a git changeset into a ``DiffDocument``:
listing, patch-target selection, path filtering, binary classification,
diff fetching and hunk parsing. Batched git calls are preferred; when a batched
call fails the collector falls back to per-file calls under the bounded fetcher
and logs a warning.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Tuple

from ..diff import (
    FileEntry, FileStatus, SkipReason, SkippedEntry, DiffFile, DiffDocument,
    DEFAULT_EXCLUDES, filter_paths, resolve_patch_targets, parse_name_status,
    parse_numstat, parse_ls_files, parse_diff_into_hunks, split_full_diff,
    index_split_entries, count_line_stats, NumstatEntry
)
from ..exceptions import GitOperationError, InvalidRefError, ValidationError
from ..git import GitOperations, DiffMode
from ..utils import BoundedFetcher

logger = logging.getLogger(__name__)

BINARY_MARKER_RE = re.compile(r'^Binary files .* differ$', re.MULTILINE)


@dataclass
class DiffOptions:
    """What to collect and how much detail to keep."""
    mode: DiffMode = DiffMode.UNSTAGED
    base: Optional[str] = None
    head: Optional[str] = None
    unified: int = 0
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    include_untracked: bool = True
    patch_for: Optional[str] = None
    name_only: bool = False
    stat_only: bool = False
    max_file_chars: Optional[int] = None

    def validate(self) -> None:
        """
        Raises:
            ValidationError: If the combination of options is not usable
        """
        if self.mode is DiffMode.BRANCH and (not self.base or not self.head):
            raise ValidationError("branch mode requires --base and --head")
        if self.unified < 0:
            raise ValidationError("unified must not be negative")
        if self.name_only and self.stat_only:
            raise ValidationError("name-only and stat cannot be combined")
        if self.max_file_chars is not None and self.max_file_chars <= 0:
            raise ValidationError("max_file_chars must be positive")

    @property
    def lists_untracked(self) -> bool:
        return self.include_untracked and self.mode is not DiffMode.BRANCH


def is_binary_no_index_diff(output: str) -> bool:
    """True when ``diff --no-index`` output reports a binary file."""
    return bool(BINARY_MARKER_RE.search(output))


class DiffCollector:
    """Builds structured diff documents from a git repository."""

    def __init__(self, git: GitOperations, fetcher: Optional[BoundedFetcher] = None):
        self.git = git
        self.fetcher = fetcher or BoundedFetcher()

    async def list_changed_files(self, options: DiffOptions) -> List[FileEntry]:
        """
        List tracked changes and, where applicable, untracked files.

        Raises:
            NotAGitRepoError: Outside a work tree
            InvalidRefError: If a branch-mode ref does not resolve
        """
        await self.git.ensure_repository()
        if options.mode is DiffMode.BRANCH:
            for ref in (options.base, options.head):
                if not await self.git.ref_exists(ref):
                    raise InvalidRefError(ref)

        output = await self.git.name_status(options.mode, options.base, options.head)
        files = parse_name_status(output)

        if options.lists_untracked:
            known = {entry.path for entry in files}
            for path in parse_ls_files(await self.git.untracked_files()):
                if path not in known:
                    files.append(FileEntry(path=path, status=FileStatus.ADDED, untracked=True))
        return files

    async def collect(self, options: DiffOptions) -> DiffDocument:
        """
        Collect the structured diff described by ``options``.

        Returns:
            DiffDocument whose included files are sorted by path

        Raises:
            PatchTargetNotFoundError: If ``patch_for`` matches no changed file
            ValidationError: If options are inconsistent
        """
        options.validate()
        files = await self.list_changed_files(options)
        skipped: List[SkippedEntry] = []

        candidates = files
        default_excludes = DEFAULT_EXCLUDES
        if options.patch_for:
            target = resolve_patch_targets(files, options.patch_for)
            wanted = {entry.identity for entry in target.targets}
            for entry in files:
                if entry.identity not in wanted:
                    skipped.append(SkippedEntry(entry.path, SkipReason.PATCH_FOR_MISMATCH, entry.status,
                                                note=f"not part of {target.kind} {target.selector}"))
            candidates = target.targets
            # an explicit target is wanted even if it looks like noise
            default_excludes = ()

        filtered = filter_paths(candidates, options.include, options.exclude, default_excludes)
        skipped.extend(filtered.skipped)

        tracked = [entry for entry in filtered.included if not entry.untracked]
        untracked = [entry for entry in filtered.included if entry.untracked]

        numstats = await self._classify_tracked(options, tracked)
        untracked_texts, untracked_errors = await self._diff_untracked(options, untracked)

        text_entries: List[FileEntry] = []
        for entry in filtered.included:
            if entry.path in untracked_errors:
                skipped.append(SkippedEntry(entry.path, SkipReason.NOT_FOUND, entry.status,
                                            note=untracked_errors[entry.path]))
                continue
            if entry.untracked:
                binary = is_binary_no_index_diff(untracked_texts.get(entry.path, ""))
            else:
                stat = numstats.get(entry.path)
                binary = stat.binary if stat else False
            if binary:
                skipped.append(SkippedEntry(entry.path, SkipReason.BINARY, entry.status))
            else:
                text_entries.append(entry)

        if options.name_only:
            diff_files = [
                DiffFile(path=e.path, status=e.status, old_path=e.old_path, untracked=e.untracked)
                for e in text_entries
            ]
        else:
            texts, fetch_errors = await self._fetch_tracked_diffs(
                options, [e for e in text_entries if not e.untracked])
            texts.update(untracked_texts)
            diff_files = []
            for entry in text_entries:
                if entry.path in fetch_errors:
                    skipped.append(SkippedEntry(entry.path, SkipReason.NOT_FOUND, entry.status,
                                                note=fetch_errors[entry.path]))
                    continue
                diff_file = self._build_file(entry, texts.get(entry.path, ""), numstats.get(entry.path),
                                             options, skipped)
                if diff_file is not None:
                    diff_files.append(diff_file)

        document = DiffDocument(
            files=diff_files,
            skipped=skipped,
            changed_file_count=len(files),
            mode=options.mode.value,
            base=options.base if options.mode is DiffMode.BRANCH else None,
            head=options.head if options.mode is DiffMode.BRANCH else None,
        )
        logger.info(f"Collected {len(diff_files)} of {len(files)} changed files "
                    f"({len(skipped)} skipped)")
        return document

    def _build_file(self, entry: FileEntry, text: str, stat: Optional[NumstatEntry],
                    options: DiffOptions, skipped: List[SkippedEntry]) -> Optional[DiffFile]:
        if not text.strip():
            skipped.append(SkippedEntry(entry.path, SkipReason.DIFF_EMPTY, entry.status))
            return None
        if options.max_file_chars is not None and len(text) > options.max_file_chars:
            skipped.append(SkippedEntry(entry.path, SkipReason.TOO_LARGE, entry.status,
                                        note=f"{len(text)} chars exceeds {options.max_file_chars}"))
            return None

        hunks = parse_diff_into_hunks(text)
        if stat is not None and not stat.binary:
            stats = {'added': stat.added, 'removed': stat.removed}
        else:
            stats = count_line_stats(hunks)
        return DiffFile(
            path=entry.path,
            status=entry.status,
            old_path=entry.old_path,
            untracked=entry.untracked,
            stats=stats,
            hunks=None if options.stat_only else hunks,
        )

    async def _classify_tracked(self, options: DiffOptions,
                                entries: List[FileEntry]) -> Dict[str, NumstatEntry]:
        """One bulk numstat call; per-file calls only when the bulk call fails."""
        if not entries:
            return {}
        try:
            output = await self.git.numstat(options.mode, options.base, options.head)
            return parse_numstat(output)
        except GitOperationError as e:
            logger.warning(f"Bulk numstat failed, classifying {len(entries)} files individually: {e}")

        async def classify(entry: FileEntry) -> Dict[str, NumstatEntry]:
            paths = [entry.old_path, entry.path] if entry.old_path else [entry.path]
            try:
                return parse_numstat(await self.git.numstat(options.mode, options.base,
                                                            options.head, paths))
            except GitOperationError as err:
                logger.debug(f"numstat failed for {entry.path}, assuming text: {err}")
                return {}

        merged: Dict[str, NumstatEntry] = {}
        for result in await self.fetcher.map(classify, entries):
            merged.update(result)
        return merged

    async def _diff_untracked(self, options: DiffOptions,
                               entries: List[FileEntry]) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Diff each untracked file against an empty baseline; the output doubles as its diff."""
        if not entries:
            return {}, {}

        async def fetch_one(entry: FileEntry) -> Tuple[str, Optional[str], Optional[str]]:
            try:
                return entry.path, await self.git.untracked_file_diff(entry.path, options.unified), None
            except GitOperationError as err:
                logger.warning(f"Could not read untracked file {entry.path}: {err}")
                return entry.path, None, str(err)

        outputs: Dict[str, str] = {}
        errors: Dict[str, str] = {}
        for path, output, error in await self.fetcher.map(fetch_one, entries):
            if error is not None:
                errors[path] = error
            else:
                outputs[path] = output
        return outputs, errors

    async def _fetch_tracked_diffs(self, options: DiffOptions,
                                   entries: List[FileEntry]) -> Tuple[Dict[str, str], Dict[str, str]]:
        """
        Fetch diff text for tracked files.

        One full diff is split per file and indexed by new and old path. Any
        file whose text is missing or empty after the split is fetched on its
        own before it may be reported as producing no diff.
        """
        if not entries:
            return {}, {}

        texts: Dict[str, str] = {}
        missing: List[FileEntry] = []
        try:
            output = await self.git.full_diff(options.mode, options.base, options.head, options.unified)
            index = index_split_entries(split_full_diff(output))
            for entry in entries:
                text = index.get(entry.path)
                if not text and entry.old_path:
                    text = index.get(entry.old_path)
                if text and text.strip():
                    texts[entry.path] = text
                else:
                    missing.append(entry)
        except GitOperationError as e:
            logger.warning(f"Bulk diff failed, fetching {len(entries)} files individually: {e}")
            missing = list(entries)

        if missing:
            logger.debug(f"Fetching {len(missing)} file diffs individually")

        async def fetch(entry: FileEntry) -> Tuple[str, Optional[str], Optional[str]]:
            try:
                text = await self.git.file_diff(options.mode, entry.path, options.base, options.head,
                                                options.unified, entry.old_path)
                return entry.path, text, None
            except GitOperationError as err:
                logger.warning(f"Could not fetch diff for {entry.path}: {err}")
                return entry.path, None, str(err)

        errors: Dict[str, str] = {}
        for path, text, error in await self.fetcher.map(fetch, missing):
            if error is not None:
                errors[path] = error
            else:
                texts[path] = text
        return texts, errors
