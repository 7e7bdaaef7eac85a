"""On-disk layout of the changelens cache."""

import logging
import re
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

CACHE_DIR = "cache"
CHUNKS_DIR = "chunks"
GITIGNORE_FILE = ".gitignore"
INDEX_FILE = "index.json"
GIT_DIR = "git"
REFS_FILE = "refs.json"
CHANGESET_DIR = "changeset"
ANALYZER_DIR = "per-analyzer"

CHANGESET_CATEGORY = "changeset"
REFS_CATEGORY = "git-refs"
ANALYZER_CATEGORY_PREFIX = "per-analyzer:"

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9_-]')


def safe_name(name: str) -> str:
    """Make a consumer name usable as a file name prefix."""
    return _UNSAFE_CHARS.sub("_", name)


def analyzer_category(name: str) -> str:
    return ANALYZER_CATEGORY_PREFIX + name


class CachePaths:
    """Resolves cache file locations under a state directory."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)
        self.cache_dir = self.state_dir / CACHE_DIR

    @property
    def chunks_dir(self) -> Path:
        return self.state_dir / CHUNKS_DIR

    def ensure_state_dir(self) -> bool:
        """
        Create the state directory with a ``.gitignore`` that ignores everything in it.

        Cache and chunk files then stay out of git status and untracked
        listings.

        Returns:
            False when the directory could not be prepared
        """
        ignore_file = self.state_dir / GITIGNORE_FILE
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            if not ignore_file.exists():
                ignore_file.write_text("*\n", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not prepare state directory {self.state_dir}: {e}")
            return False
        return True

    @property
    def index_path(self) -> Path:
        return self.cache_dir / INDEX_FILE

    @property
    def git_dir(self) -> Path:
        return self.cache_dir / GIT_DIR

    @property
    def refs_path(self) -> Path:
        return self.git_dir / REFS_FILE

    @property
    def changeset_dir(self) -> Path:
        return self.cache_dir / CHANGESET_DIR

    @property
    def analyzer_dir(self) -> Path:
        return self.cache_dir / ANALYZER_DIR

    def changeset_path(self, key: str) -> Path:
        return self.changeset_dir / f"{key}.json"

    def analyzer_path(self, name: str, key: str) -> Path:
        return self.analyzer_dir / f"{safe_name(name)}_{key}.json"

    def entry_path(self, category: str, key: str) -> Path:
        """File that backs an index entry of ``category``."""
        if category == CHANGESET_CATEGORY:
            return self.changeset_path(key)
        if category == REFS_CATEGORY:
            return self.refs_path
        if category.startswith(ANALYZER_CATEGORY_PREFIX):
            return self.analyzer_path(category[len(ANALYZER_CATEGORY_PREFIX):], key)
        raise ValueError(f"Unknown cache category: {category}")
