"""Resolution of ``--patch-for`` selectors onto changed files."""

from dataclasses import dataclass, field
from typing import List, Tuple, Sequence

from ..exceptions import PatchTargetNotFoundError
from .models import FileEntry

FILE = "file"
DIRECTORY = "directory"


@dataclass
class PatchTarget:
    kind: str
    selector: str
    targets: List[FileEntry] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return [t.path for t in self.targets]


def normalize_selector(raw: str) -> Tuple[str, bool]:
    """
    Normalize a user-supplied path selector.

    Backslashes become forward slashes, leading ``./`` is stripped and a
    trailing slash is removed but reported, since it forces directory
    semantics.

    Returns:
        ``(normalized, force_directory)``; the repository root is ``"."``.
    """
    selector = raw.strip().replace("\\", "/")
    force_directory = selector.endswith("/")
    while selector.startswith("./"):
        selector = selector[2:]
    selector = selector.rstrip("/")
    if selector in ("", "."):
        return ".", True
    return selector, force_directory


def path_in_directory(path: str, directory: str) -> bool:
    if directory == ".":
        return True
    return path == directory or path.startswith(directory + "/")


def resolve_patch_targets(files: Sequence[FileEntry], selector: str) -> PatchTarget:
    """
    Map a selector onto the changed files it denotes.

    An exact match on ``path`` or ``old_path`` wins unless the selector
    ended with a slash. Otherwise every file under the selector directory is
    returned.

    Raises:
        PatchTargetNotFoundError: If nothing matches
    """
    normalized, force_directory = normalize_selector(selector)

    if not force_directory:
        for entry in files:
            if entry.path == normalized or entry.old_path == normalized:
                return PatchTarget(FILE, normalized, [entry])

    matches = [
        entry for entry in files
        if path_in_directory(entry.path, normalized)
        or (entry.old_path is not None and path_in_directory(entry.old_path, normalized))
    ]
    if not matches:
        raise PatchTargetNotFoundError(selector)
    return PatchTarget(DIRECTORY, normalized, matches)
