"""
Git operations module for changelens.

Command-line builders are pure functions so they can be tested without a
repository. ``GitOperations`` runs git asynchronously; every command failure
surfaces as ``GitOperationError``.
"""

import asyncio
import logging
import time
from collections import defaultdict
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Sequence

from ..exceptions import GitOperationError, NotAGitRepoError

logger = logging.getLogger(__name__)


class DiffMode(Enum):
    """Which two trees a changeset compares."""
    BRANCH = "branch"      # base..head
    UNSTAGED = "unstaged"  # working tree vs index
    STAGED = "staged"      # index vs HEAD
    ALL = "all"            # working tree vs HEAD


def build_mode_args(mode: DiffMode, base: Optional[str] = None,
                    head: Optional[str] = None) -> List[str]:
    if mode is DiffMode.BRANCH:
        if not base or not head:
            raise ValueError("branch mode requires both base and head")
        return [f"{base}..{head}"]
    if mode is DiffMode.STAGED:
        return ["--staged"]
    if mode is DiffMode.ALL:
        return ["HEAD"]
    return []


def build_name_status_args(mode: DiffMode, base: Optional[str] = None,
                           head: Optional[str] = None) -> List[str]:
    return ["diff", "--name-status", "-z", "--find-renames"] + build_mode_args(mode, base, head)


def build_numstat_args(mode: DiffMode, base: Optional[str] = None, head: Optional[str] = None,
                       paths: Optional[Sequence[str]] = None) -> List[str]:
    args = ["diff", "--numstat", "-z", "--find-renames"] + build_mode_args(mode, base, head)
    if paths:
        args += ["--"] + list(paths)
    return args


def build_full_diff_args(mode: DiffMode, base: Optional[str] = None, head: Optional[str] = None,
                         unified: int = 0, paths: Optional[Sequence[str]] = None) -> List[str]:
    args = ["diff", f"--unified={unified}", "--find-renames", "--no-color", "--no-ext-diff"]
    args += build_mode_args(mode, base, head)
    if paths:
        args += ["--"] + list(paths)
    return args


def build_per_file_diff_args(mode: DiffMode, path: str, base: Optional[str] = None,
                             head: Optional[str] = None, unified: int = 0,
                             old_path: Optional[str] = None) -> List[str]:
    """Diff of a single file; renames pass both paths so git can pair them."""
    args = ["diff", f"--unified={unified}", "--find-renames", "--no-color", "--no-ext-diff"]
    args += build_mode_args(mode, base, head)
    args.append("--")
    if old_path:
        args.append(old_path)
    args.append(path)
    return args


def build_untracked_diff_args(path: str, unified: int = 0) -> List[str]:
    return ["diff", "--no-index", f"--unified={unified}", "--no-color", "--", "/dev/null", path]


class GitOperations:
    """Runs git commands for one repository."""

    def __init__(self, cwd: Optional[str] = None, git_binary: str = "git"):
        """
        Initialize Git operations handler.

        Args:
            cwd: Repository working directory, current directory by default
            git_binary: Name or path of the git executable
        """
        self.cwd = str(Path(cwd) if cwd else Path.cwd())
        self.git_binary = git_binary
        self._command_stats: Dict[str, Dict[str, float]] = defaultdict(lambda: {
            'count': 0, 'total_time': 0.0, 'avg_time': 0.0
        })

    async def run(self, args: Sequence[str], ok_codes: Sequence[int] = (0,)) -> str:
        """
        Run a git command and return its standard output.

        Args:
            args: Arguments after ``git``
            ok_codes: Exit codes treated as success

        Returns:
            Decoded standard output

        Raises:
            GitOperationError: If git cannot be started or exits with another code
        """
        command = [self.git_binary] + list(args)
        command_str = ' '.join(command)
        start_time = time.time()

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GitOperationError(command_str, str(e))

        stdout, stderr = await process.communicate()
        self._record_command_stats(args[0] if args else "git", time.time() - start_time)

        if process.returncode not in ok_codes:
            raise GitOperationError(command_str, stderr.decode('utf-8', errors='replace'),
                                    process.returncode)
        return stdout.decode('utf-8', errors='replace')

    def _record_command_stats(self, command: str, execution_time: float) -> None:
        stats = self._command_stats[command]
        stats['count'] += 1
        stats['total_time'] += execution_time
        stats['avg_time'] = stats['total_time'] / stats['count']

    def get_command_stats(self) -> Dict[str, Dict[str, float]]:
        return {name: dict(stats) for name, stats in self._command_stats.items()}

    async def is_git_repo(self) -> bool:
        try:
            output = await self.run(["rev-parse", "--is-inside-work-tree"])
        except GitOperationError:
            return False
        return output.strip() == "true"

    async def ensure_repository(self) -> None:
        """
        Raises:
            NotAGitRepoError: If the working directory is not inside a work tree
        """
        if not await self.is_git_repo():
            raise NotAGitRepoError(self.cwd)

    async def rev_parse(self, ref: str) -> Optional[str]:
        """Resolve ``ref`` to a commit id, or None if it does not verify."""
        try:
            output = await self.run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        except GitOperationError as e:
            logger.debug(f"Could not resolve {ref}: {e}")
            return None
        sha = output.strip()
        return sha or None

    async def repo_root(self) -> str:
        """Top-level directory of the work tree."""
        return (await self.run(["rev-parse", "--show-toplevel"])).strip()

    async def ref_exists(self, ref: str) -> bool:
        return await self.rev_parse(ref) is not None

    async def head_sha(self) -> Optional[str]:
        return await self.rev_parse("HEAD")

    async def status_porcelain(self) -> str:
        return await self.run(["status", "--porcelain", "-z", "--untracked-files=all"])

    async def write_tree(self) -> Optional[str]:
        """Tree id of the current index; None while the index has conflicts."""
        try:
            return (await self.run(["write-tree"])).strip() or None
        except GitOperationError as e:
            logger.debug(f"write-tree failed: {e}")
            return None

    async def name_status(self, mode: DiffMode, base: Optional[str] = None,
                          head: Optional[str] = None) -> str:
        return await self.run(build_name_status_args(mode, base, head))

    async def numstat(self, mode: DiffMode, base: Optional[str] = None, head: Optional[str] = None,
                      paths: Optional[Sequence[str]] = None) -> str:
        return await self.run(build_numstat_args(mode, base, head, paths))

    async def untracked_files(self) -> str:
        return await self.run(["ls-files", "--others", "--exclude-standard", "-z"])

    async def full_diff(self, mode: DiffMode, base: Optional[str] = None, head: Optional[str] = None,
                        unified: int = 0, paths: Optional[Sequence[str]] = None) -> str:
        return await self.run(build_full_diff_args(mode, base, head, unified, paths))

    async def file_diff(self, mode: DiffMode, path: str, base: Optional[str] = None,
                        head: Optional[str] = None, unified: int = 0,
                        old_path: Optional[str] = None) -> str:
        return await self.run(build_per_file_diff_args(mode, path, base, head, unified, old_path))

    async def untracked_file_diff(self, path: str, unified: int = 0) -> str:
        # --no-index exits 1 when the files differ
        return await self.run(build_untracked_diff_args(path, unified), ok_codes=(0, 1))


def parse_status_porcelain(output: str) -> List[str]:
    """
    Paths mentioned by ``git status --porcelain -z``.

    Rename and copy records carry their source path in the following field;
    both paths are returned.
    """
    paths: List[str] = []
    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        record = tokens[i]
        i += 1
        if len(record) < 4:
            continue
        code, path = record[:2], record[3:]
        paths.append(path)
        if ("R" in code or "C" in code) and i < len(tokens):
            paths.append(tokens[i])
            i += 1
    return paths
