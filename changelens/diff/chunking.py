"""Character-budget chunk planning for per-file diffs."""

from typing import List, Sequence, Tuple

from ..exceptions import ValidationError

Chunk = List[Tuple[str, str]]


def chunk_by_budget(items: Sequence[Tuple[str, str]], max_chars: int) -> List[Chunk]:
    """
    Group ``(path, diff_text)`` pairs into chunks of at most ``max_chars``.

    Items are never split or reordered. An item larger than the budget gets a
    chunk of its own.

    Args:
        items: Ordered per-file diffs
        max_chars: Character budget per chunk

    Returns:
        List of chunks, each a contiguous slice of ``items``

    Raises:
        ValidationError: If ``max_chars`` is not positive
    """
    if max_chars <= 0:
        raise ValidationError(f"max_chars must be positive, got {max_chars}")

    chunks: List[Chunk] = []
    current: Chunk = []
    current_size = 0

    for path, text in items:
        size = len(text)
        if current and current_size + size > max_chars:
            chunks.append(current)
            current, current_size = [], 0
        current.append((path, text))
        current_size += size
        if size > max_chars:
            # oversized item stays alone
            chunks.append(current)
            current, current_size = [], 0

    if current:
        chunks.append(current)
    return chunks


def chunk_size(chunk: Chunk) -> int:
    return sum(len(text) for _, text in chunk)


def render_chunk_text(chunk: Chunk) -> str:
    parts = []
    for _, text in chunk:
        parts.append(text if text.endswith("\n") or not text else text + "\n")
    return "".join(parts)
