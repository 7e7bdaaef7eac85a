"""
Changelens exceptions module.

This module defines custom exceptions for the changelens tool.
"""


class ChangelensError(Exception):
    """Base exception for all changelens related errors."""

    exit_code = 1


class ConfigurationError(ChangelensError):
    """Raised when there are configuration-related issues."""
    pass


class GitOperationError(ChangelensError):
    """Raised when git operations fail."""

    def __init__(self, command: str, stderr: str = "", returncode: int = None):
        """
        Initialize GitOperationError.

        Args:
            command: The git command line that failed
            stderr: Captured standard error of the command
            returncode: Process exit status, if the process ran at all
        """
        message = f"Git command failed: {command}"
        if stderr:
            message = f"{message} - {stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.stderr = stderr
        self.returncode = returncode


class NotAGitRepoError(GitOperationError):
    """Raised when the working directory is not inside a git repository."""

    def __init__(self, cwd: str):
        super().__init__("git rev-parse --is-inside-work-tree",
                         f"not a git repository: {cwd}")
        self.cwd = cwd


class InvalidRefError(ChangelensError):
    """Raised when a git reference does not resolve to a commit."""

    def __init__(self, ref: str):
        super().__init__(f"Invalid git reference: {ref}")
        self.ref = ref


class PatchTargetNotFoundError(ChangelensError):
    """Raised when a patch selector matches no changed file."""

    def __init__(self, selector: str):
        super().__init__(f"No changed file or directory matches '{selector}'")
        self.selector = selector


class ValidationError(ChangelensError):
    """Raised when input validation fails."""
    pass


class CacheError(ChangelensError):
    """Raised by the cache layer; always caught at the cache boundary."""
    pass
