"""
Durable JSON document storage with atomic replacement.

A document is written to a sibling temporary file and then renamed over
the final path, so readers see either the previous or the new content.
"""

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, List, Optional

from ..exceptions import CacheError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def temp_path_for(path: Path) -> Path:
    return path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}")


class CacheStore:
    """File-backed key to JSON document persistence."""

    def atomic_write(self, path: Path, text: str) -> int:
        """
        Atomically write ``text`` to ``path``.

        Args:
            path: Final document path
            text: Document content

        Returns:
            Number of bytes written

        Raises:
            CacheError: If the directory, the temp file or the rename fails
        """
        data = text.encode('utf-8')
        temp_path = temp_path_for(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug(f"Could not remove temp file {temp_path}: {cleanup_error}")
            raise CacheError(f"Failed to write cache file {path}: {e}")
        return len(data)

    def write_json(self, path: Path, data: Any) -> int:
        try:
            text = json.dumps(data, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Cache document for {path} is not serializable: {e}")
        return self.atomic_write(path, text)

    def read_json(self, path: Path) -> Optional[Any]:
        """Read a JSON document; None when it is missing or unreadable."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(f"Ignoring unreadable cache file {path}: {e}")
            return None

    def delete(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.debug(f"Could not delete cache file {path}: {e}")
            return False

    def size_of(self, path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0

    def list_files(self, directory: Path) -> List[Path]:
        """Regular files directly inside ``directory``; empty if it does not exist."""
        try:
            return sorted(p for p in directory.iterdir() if p.is_file())
        except OSError:
            return []
