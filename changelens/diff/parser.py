"""
Parsers for git diff output.

Covers unified-diff hunks, multi-file diff splitting and the listing formats
(``--name-status``, ``--numstat``, ``ls-files``) used by the collector.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Dict

from .models import DiffHunk, DiffLine, LineKind, FileEntry, FileStatus

HUNK_HEADER_RE = re.compile(r'^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@')
DIFF_GIT_RE = re.compile(r'^diff --git a/(.+) b/(.+)$')


@dataclass
class SplitDiffEntry:
    """Raw diff text of a single file cut out of a multi-file diff."""
    path: str
    text: str
    old_path: Optional[str] = None


@dataclass
class NumstatEntry:
    path: str
    added: int
    removed: int
    binary: bool
    old_path: Optional[str] = None


def parse_hunk_header(header: str) -> Optional[Tuple[int, int, int, int]]:
    """
    Parse a unified-diff hunk header.

    Args:
        header: Header line such as ``@@ -1,4 +2,6 @@ def main():``

    Returns:
        ``(old_start, old_lines, new_start, new_lines)`` or None when the
        header does not have the expected shape. Omitted line counts are 1.
    """
    match = HUNK_HEADER_RE.match(header)
    if not match:
        return None
    old_start, old_lines, new_start, new_lines = match.groups()
    return (
        int(old_start),
        int(old_lines) if old_lines is not None else 1,
        int(new_start),
        int(new_lines) if new_lines is not None else 1,
    )


def _make_hunk(header: str) -> DiffHunk:
    parsed = parse_hunk_header(header)
    if parsed is None:
        return DiffHunk(header=header)
    old_start, old_lines, new_start, new_lines = parsed
    return DiffHunk(header=header, old_start=old_start, old_lines=old_lines,
                    new_start=new_start, new_lines=new_lines)


def parse_diff_into_hunks(text: str) -> List[DiffHunk]:
    """
    Parse the diff of one file into hunks.

    File header lines before the first ``@@`` are ignored. A hunk whose
    header cannot be parsed is still returned with its raw header and its
    lines classified.
    """
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None

    for line in text.split("\n"):
        if line.startswith("@@"):
            current = _make_hunk(line)
            hunks.append(current)
            continue
        if current is None:
            continue
        if line.startswith("\\"):
            # "\ No newline at end of file"
            continue
        if line.startswith("+"):
            current.lines.append(DiffLine(LineKind.ADD, line[1:]))
        elif line.startswith("-"):
            current.lines.append(DiffLine(LineKind.DEL, line[1:]))
        elif line.startswith(" "):
            current.lines.append(DiffLine(LineKind.CONTEXT, line[1:]))
        elif line:
            current.lines.append(DiffLine(LineKind.CONTEXT, line))
        # a bare empty line is the trailing newline of the diff output

    return hunks


def count_line_stats(hunks: List[DiffHunk]) -> Dict[str, int]:
    added = removed = 0
    for hunk in hunks:
        for line in hunk.lines:
            if line.kind is LineKind.ADD:
                added += 1
            elif line.kind is LineKind.DEL:
                removed += 1
    return {'added': added, 'removed': removed}


def split_full_diff(text: str) -> List[SplitDiffEntry]:
    """
    Split a multi-file ``git diff`` output into per-file entries.

    Boundaries are the ``diff --git a/X b/Y`` lines. Each entry keeps its
    text exactly as it appeared, so joining all entries reproduces the input
    from the first boundary on.
    """
    entries: List[SplitDiffEntry] = []
    current: Optional[SplitDiffEntry] = None
    buffer: List[str] = []

    for line in text.splitlines(keepends=True):
        match = DIFF_GIT_RE.match(line.rstrip("\r\n"))
        if match:
            if current is not None:
                current.text = "".join(buffer)
                entries.append(current)
            old, new = match.group(1), match.group(2)
            current = SplitDiffEntry(path=new, text="", old_path=old if old != new else None)
            buffer = [line]
        elif current is not None:
            buffer.append(line)

    if current is not None:
        current.text = "".join(buffer)
        entries.append(current)
    return entries


def index_split_entries(entries: List[SplitDiffEntry]) -> Dict[str, str]:
    """Index split diff text by new path and, for renames, by old path too."""
    index: Dict[str, str] = {}
    for entry in entries:
        index[entry.path] = entry.text
        if entry.old_path and entry.old_path not in index:
            index[entry.old_path] = entry.text
    return index


def parse_name_status(output: str) -> List[FileEntry]:
    """
    Parse ``git diff --name-status`` output.

    Both the NUL-separated ``-z`` form and the tab/newline form are accepted.
    Renames and copies carry the source path as ``old_path``.
    """
    if not output.strip("\0\n "):
        return []

    entries: List[FileEntry] = []
    if "\0" in output:
        tokens = output.split("\0")
        i = 0
        while i < len(tokens):
            code = tokens[i].strip()
            if not code:
                i += 1
                continue
            status = FileStatus.from_code(code)
            if code[0] in "RC" and i + 2 < len(tokens):
                entries.append(FileEntry(path=tokens[i + 2], status=status, old_path=tokens[i + 1]))
                i += 3
            elif i + 1 < len(tokens):
                entries.append(FileEntry(path=tokens[i + 1], status=status))
                i += 2
            else:
                break
        return entries

    for line in output.strip().split("\n"):
        if not line.strip():
            continue
        parts = line.split("\t")
        code = parts[0].strip()
        status = FileStatus.from_code(code)
        if code[:1] in ("R", "C") and len(parts) >= 3:
            entries.append(FileEntry(path=parts[2], status=status, old_path=parts[1]))
        elif len(parts) >= 2:
            entries.append(FileEntry(path=parts[1], status=status))
    return entries


def _numstat_counts(added: str, removed: str) -> Tuple[int, int, bool]:
    if added == "-" or removed == "-":
        return 0, 0, True
    try:
        return int(added), int(removed), False
    except ValueError:
        return 0, 0, True


def parse_numstat(output: str) -> Dict[str, NumstatEntry]:
    """
    Parse ``git diff --numstat`` output keyed by (new) path.

    A ``-`` count marks a binary file. In the ``-z`` form a rename is written
    as ``added<TAB>removed<TAB><NUL>old<NUL>new<NUL>``; in the line form it is
    ``added<TAB>removed<TAB>old<TAB>new``.
    """
    result: Dict[str, NumstatEntry] = {}
    if not output.strip("\0\n "):
        return result

    if "\0" in output:
        tokens = output.split("\0")
        i = 0
        while i < len(tokens):
            record = tokens[i].lstrip("\n")
            i += 1
            if not record:
                continue
            parts = record.split("\t", 2)
            if len(parts) < 3:
                continue
            added, removed, binary = _numstat_counts(parts[0], parts[1])
            if parts[2]:
                entry = NumstatEntry(parts[2], added, removed, binary)
            elif i + 1 < len(tokens):
                entry = NumstatEntry(tokens[i + 1], added, removed, binary, old_path=tokens[i])
                i += 2
            else:
                break
            result[entry.path] = entry
        return result

    for line in output.strip().split("\n"):
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        added, removed, binary = _numstat_counts(parts[0], parts[1])
        if len(parts) >= 4:
            entry = NumstatEntry(parts[3], added, removed, binary, old_path=parts[2])
        else:
            entry = NumstatEntry(parts[2], added, removed, binary)
        result[entry.path] = entry
    return result


def parse_ls_files(output: str) -> List[str]:
    """Parse NUL-separated ``git ls-files -z`` output."""
    return [p for p in output.split("\0") if p.strip()]
