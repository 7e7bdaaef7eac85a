"""
Data model for structured diffs.

Everything here is plain data: created per invocation from git output and
serialized with camelCase keys, which is the form consumers and cache
documents read back.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any

DOCUMENT_SCHEMA_VERSION = "2.0"


class FileStatus(Enum):
    """Change status of a file in a changeset."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"
    TYPE_CHANGED = "type-changed"
    UNMERGED = "unmerged"
    UNKNOWN = "unknown"

    @classmethod
    def from_code(cls, code: str) -> 'FileStatus':
        """Map a git name-status letter (e.g. ``M`` or ``R087``) to a status."""
        letter = code[:1].upper() if code else ""
        return _STATUS_CODES.get(letter, cls.UNKNOWN)


_STATUS_CODES = {
    "A": FileStatus.ADDED,
    "M": FileStatus.MODIFIED,
    "D": FileStatus.DELETED,
    "R": FileStatus.RENAMED,
    "C": FileStatus.COPIED,
    "T": FileStatus.TYPE_CHANGED,
    "U": FileStatus.UNMERGED,
}


class LineKind(Enum):
    ADD = "add"
    DEL = "del"
    CONTEXT = "context"


class SkipReason(Enum):
    """Why a changed file was left out of the structured document."""
    EXCLUDED_BY_DEFAULT = "excluded-by-default"
    EXCLUDED_BY_USER = "excluded-by-user"
    EXCLUDED_BY_GLOB = "excluded-by-glob"
    BINARY = "binary"
    TOO_LARGE = "too-large"
    UNSUPPORTED = "unsupported"
    NOT_FOUND = "not-found"
    NOT_INCLUDED = "not-included"
    DIFF_EMPTY = "diff-empty"
    PATCH_FOR_MISMATCH = "patch-for-mismatch"


@dataclass(frozen=True)
class FileEntry:
    """A changed file as listed by git."""
    path: str
    status: FileStatus
    old_path: Optional[str] = None
    untracked: bool = False

    @property
    def identity(self):
        return (self.path, self.old_path)

    def to_dict(self) -> Dict[str, Any]:
        data = {'path': self.path, 'status': self.status.value}
        if self.old_path:
            data['oldPath'] = self.old_path
        if self.untracked:
            data['untracked'] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileEntry':
        return cls(
            path=data['path'],
            status=FileStatus(data.get('status', 'unknown')),
            old_path=data.get('oldPath'),
            untracked=bool(data.get('untracked', False)),
        )


@dataclass
class DiffLine:
    kind: LineKind
    text: str

    def prefix(self) -> str:
        if self.kind is LineKind.ADD:
            return "+"
        if self.kind is LineKind.DEL:
            return "-"
        return " "

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind.value, 'text': self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffLine':
        return cls(kind=LineKind(data['kind']), text=data.get('text', ''))


@dataclass
class DiffHunk:
    """
    One contiguous block of a unified diff.

    The numeric range fields are None when the header could not be parsed;
    the raw header is always kept.
    """
    header: str
    old_start: Optional[int] = None
    old_lines: Optional[int] = None
    new_start: Optional[int] = None
    new_lines: Optional[int] = None
    lines: List[DiffLine] = field(default_factory=list)

    @property
    def added(self) -> List[str]:
        return [line.text for line in self.lines if line.kind is LineKind.ADD]

    @property
    def removed(self) -> List[str]:
        return [line.text for line in self.lines if line.kind is LineKind.DEL]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'header': self.header}
        for key, value in (('oldStart', self.old_start), ('oldLines', self.old_lines),
                           ('newStart', self.new_start), ('newLines', self.new_lines)):
            if value is not None:
                data[key] = value
        data['lines'] = [line.to_dict() for line in self.lines]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffHunk':
        return cls(
            header=data['header'],
            old_start=data.get('oldStart'),
            old_lines=data.get('oldLines'),
            new_start=data.get('newStart'),
            new_lines=data.get('newLines'),
            lines=[DiffLine.from_dict(line) for line in data.get('lines', [])],
        )


@dataclass
class SkippedEntry:
    path: str
    reason: SkipReason
    status: Optional[FileStatus] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'path': self.path}
        if self.status is not None:
            data['status'] = self.status.value
        data['reason'] = self.reason.value
        if self.note:
            data['note'] = self.note
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SkippedEntry':
        status = data.get('status')
        return cls(
            path=data['path'],
            reason=SkipReason(data['reason']),
            status=FileStatus(status) if status else None,
            note=data.get('note'),
        )


@dataclass
class DiffFile:
    """Structured diff of one included file."""
    path: str
    status: FileStatus
    old_path: Optional[str] = None
    untracked: bool = False
    binary: bool = False
    stats: Optional[Dict[str, int]] = None
    hunks: Optional[List[DiffHunk]] = None

    def render_text(self) -> str:
        """
        Unified-diff text rebuilt from the structured fields.

        A document read back from the cache renders exactly like the one it
        was saved from.
        """
        old = self.old_path or self.path
        parts = [f"diff --git a/{old} b/{self.path}\n"]
        if self.old_path:
            verb = "copy" if self.status is FileStatus.COPIED else "rename"
            parts.append(f"{verb} from {self.old_path}\n{verb} to {self.path}\n")
        if self.hunks:
            source = "/dev/null" if self.status is FileStatus.ADDED else f"a/{old}"
            target = "/dev/null" if self.status is FileStatus.DELETED else f"b/{self.path}"
            parts.append(f"--- {source}\n+++ {target}\n")
        for hunk in self.hunks or []:
            parts.append(hunk.header + "\n")
            parts.extend(line.prefix() + line.text + "\n" for line in hunk.lines)
        return "".join(parts)

    def char_count(self) -> int:
        return len(self.render_text())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'path': self.path}
        if self.old_path:
            data['oldPath'] = self.old_path
        data['status'] = self.status.value
        if self.untracked:
            data['untracked'] = True
        if self.binary:
            data['binary'] = True
        if self.stats is not None:
            data['stats'] = dict(self.stats)
        if self.hunks is not None:
            data['hunks'] = [hunk.to_dict() for hunk in self.hunks]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffFile':
        hunks = data.get('hunks')
        return cls(
            path=data['path'],
            status=FileStatus(data.get('status', 'unknown')),
            old_path=data.get('oldPath'),
            untracked=bool(data.get('untracked', False)),
            binary=bool(data.get('binary', False)),
            stats=data.get('stats'),
            hunks=[DiffHunk.from_dict(h) for h in hunks] if hunks is not None else None,
        )


@dataclass
class DiffDocument:
    """The structured diff of a whole changeset."""
    files: List[DiffFile] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)
    changed_file_count: int = 0
    mode: Optional[str] = None
    base: Optional[str] = None
    head: Optional[str] = None

    @property
    def total_chars(self) -> int:
        return sum(f.char_count() for f in self.files)

    def summary(self) -> Dict[str, int]:
        return {
            'changedFileCount': self.changed_file_count,
            'includedFileCount': len(self.files),
            'skippedFileCount': len(self.skipped),
            'totalChars': self.total_chars,
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'schemaVersion': DOCUMENT_SCHEMA_VERSION}
        if self.mode:
            data['mode'] = self.mode
        if self.base:
            data['base'] = self.base
        if self.head:
            data['head'] = self.head
        data['files'] = [f.to_dict() for f in self.files]
        data['skippedFiles'] = [s.to_dict() for s in self.skipped]
        data['summary'] = self.summary()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffDocument':
        summary = data.get('summary', {})
        files = [DiffFile.from_dict(f) for f in data.get('files', [])]
        skipped = [SkippedEntry.from_dict(s) for s in data.get('skippedFiles', [])]
        return cls(
            files=files,
            skipped=skipped,
            changed_file_count=summary.get('changedFileCount', len(files) + len(skipped)),
            mode=data.get('mode'),
            base=data.get('base'),
            head=data.get('head'),
        )
