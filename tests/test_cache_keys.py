"""
Tests for cache key computation.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from changelens.analysis import CacheRelevance
from changelens.cache import CacheKeyEngine, compute_cache_key, hash_string, hash_file_patterns
from changelens.changeset import DiffOptions
from changelens.diff import DiffDocument, DiffFile, DiffHunk, DiffLine, FileStatus, LineKind
from changelens.git import DiffMode


def make_file(path, added=("x",), removed=(), status=FileStatus.MODIFIED, header="@@ -1 +1 @@"):
    lines = [DiffLine(LineKind.DEL, t) for t in removed] + [DiffLine(LineKind.ADD, t) for t in added]
    return DiffFile(path=path, status=status, hunks=[DiffHunk(header=header, lines=lines)])


class TestHashing(unittest.TestCase):

    def test_hash_length_and_stability(self):
        self.assertEqual(len(hash_string("abc")), 16)
        self.assertEqual(hash_string("abc"), hash_string("abc"))
        self.assertEqual(compute_cache_key("a", "b"), hash_string("a:b"))

    def test_pattern_hash_ignores_order(self):
        self.assertEqual(hash_file_patterns(["b", "a"], ["y", "x"]),
                         hash_file_patterns(["a", "b"], ["x", "y"]))
        self.assertNotEqual(hash_file_patterns(["a"], []), hash_file_patterns([], ["a"]))


class TestCacheKeyEngine(unittest.TestCase):
    """Test cases for content-scoped and fallback keys."""

    def setUp(self):
        self.engine = CacheKeyEngine("0.3.0")
        self.relevance = CacheRelevance(include_globs=("src/**",))

    def document(self, *files):
        return DiffDocument(files=list(files), changed_file_count=len(files), mode="unstaged")

    def test_deterministic_under_reordering(self):
        a, b = make_file("src/a.py"), make_file("src/b.py", added=("y",))
        first = self.engine.consumer_key("routes", self.document(a, b), self.relevance)
        second = self.engine.consumer_key("routes", self.document(b, a), self.relevance)
        self.assertEqual(first, second)

    def test_change_outside_relevance_keeps_key(self):
        base = self.document(make_file("src/a.py"), make_file("docs/readme.md", added=("v1",)))
        edited = self.document(make_file("src/a.py"), make_file("docs/readme.md", added=("v2",)),
                               make_file("docs/new.md"))

        self.assertEqual(self.engine.consumer_key("routes", base, self.relevance),
                         self.engine.consumer_key("routes", edited, self.relevance))

    def test_change_inside_relevance_changes_key(self):
        base = self.document(make_file("src/a.py", added=("one",)))
        edited = self.document(make_file("src/a.py", added=("two",)))
        self.assertNotEqual(self.engine.consumer_key("routes", base, self.relevance),
                            self.engine.consumer_key("routes", edited, self.relevance))

    def test_exclude_globs_respected(self):
        relevance = CacheRelevance(include_globs=("src/**",), exclude_globs=("**/*_test.py",))
        base = self.document(make_file("src/a.py"), make_file("src/a_test.py", added=("1",)))
        edited = self.document(make_file("src/a.py"), make_file("src/a_test.py", added=("2",)))
        self.assertEqual(self.engine.consumer_key("x", base, relevance),
                         self.engine.consumer_key("x", edited, relevance))

    def test_status_and_header_are_part_of_key(self):
        modified = self.document(make_file("src/a.py"))
        added = self.document(make_file("src/a.py", status=FileStatus.ADDED))
        moved = self.document(make_file("src/a.py", header="@@ -5 +5 @@"))
        keys = {self.engine.consumer_key("x", d, self.relevance) for d in (modified, added, moved)}
        self.assertEqual(len(keys), 3)

    def test_separators_prevent_line_merging(self):
        joined = self.document(make_file("src/a.py", added=("a\nb",)))
        split = self.document(make_file("src/a.py", added=("a", "b")))
        self.assertNotEqual(self.engine.consumer_key("x", joined, self.relevance),
                            self.engine.consumer_key("x", split, self.relevance))

    def test_version_is_folded_in(self):
        doc = self.document(make_file("src/a.py"))
        self.assertNotEqual(CacheKeyEngine("1.0.0").consumer_key("x", doc, self.relevance),
                            CacheKeyEngine("1.0.1").consumer_key("x", doc, self.relevance))
        self.assertNotEqual(CacheKeyEngine("1.0.0").consumer_key("x", doc),
                            CacheKeyEngine("1.0.1").consumer_key("x", doc))

    def test_consumer_name_is_folded_in(self):
        doc = self.document(make_file("src/a.py"))
        self.assertNotEqual(self.engine.consumer_key("a", doc, self.relevance),
                            self.engine.consumer_key("b", doc, self.relevance))

    def test_fallback_sees_whole_changeset(self):
        base = self.document(make_file("src/a.py"), make_file("docs/readme.md", added=("v1",)))
        edited = self.document(make_file("src/a.py"), make_file("docs/readme.md", added=("v2",)))
        self.assertNotEqual(self.engine.consumer_key("summary", base),
                            self.engine.consumer_key("summary", edited))

    def test_fallback_uses_changeset_key(self):
        doc = self.document(make_file("src/a.py"))
        self.assertEqual(self.engine.consumer_key("summary", doc, changeset_key="abc"),
                         compute_cache_key("abc", "summary", "0.3.0"))


class TestChangesetKey(unittest.IsolatedAsyncioTestCase):
    """Test cases for changeset keys and worktree signatures."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        (self.root / "a.txt").write_text("one\n", encoding='utf-8')
        self.engine = CacheKeyEngine("0.3.0")

        self.git = MagicMock()
        self.git.cwd = str(self.root)
        self.git.status_porcelain = AsyncMock(return_value=" M a.txt\0?? new.txt\0")
        self.git.write_tree = AsyncMock(return_value="t" * 40)
        self.git.head_sha = AsyncMock(return_value="h" * 40)
        self.git.repo_root = AsyncMock(return_value=str(self.root))
        self.git.rev_parse = AsyncMock(side_effect=lambda ref: {"main": "1" * 40, "topic": "2" * 40}.get(ref))

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_worktree_signature_tracks_file_edits(self):
        first = await self.engine.worktree_signature(self.git)
        self.assertEqual(first, await self.engine.worktree_signature(self.git))

        (self.root / "a.txt").write_text("one\ntwo\n", encoding='utf-8')
        stat = os.stat(self.root / "a.txt")
        os.utime(self.root / "a.txt", ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

        self.assertNotEqual(first, await self.engine.worktree_signature(self.git))

    async def test_worktree_signature_tracks_head(self):
        first = await self.engine.worktree_signature(self.git)
        self.git.head_sha.return_value = "z" * 40
        self.assertNotEqual(first, await self.engine.worktree_signature(self.git))

    async def test_branch_key_uses_resolved_shas(self):
        options = DiffOptions(mode=DiffMode.BRANCH, base="main", head="topic")
        first = await self.engine.changeset_key(options, self.git)

        self.git.rev_parse.side_effect = lambda ref: {"main": "1" * 40, "topic": "3" * 40}.get(ref)
        second = await self.engine.changeset_key(options, self.git)

        self.assertNotEqual(first, second)
        self.git.status_porcelain.assert_not_awaited()

    async def test_options_change_key(self):
        plain = await self.engine.changeset_key(DiffOptions(), self.git)
        filtered = await self.engine.changeset_key(DiffOptions(include=["src/**"]), self.git)
        wider = await self.engine.changeset_key(DiffOptions(unified=3), self.git)
        self.assertEqual(len({plain, filtered, wider}), 3)

    async def test_ref_cache_is_used_when_given(self):
        refs = MagicMock()
        refs.resolve = AsyncMock(return_value="9" * 40)
        options = DiffOptions(mode=DiffMode.BRANCH, base="main", head="topic")

        await self.engine.changeset_key(options, self.git, refs)

        self.assertEqual(refs.resolve.await_count, 2)
        self.git.rev_parse.assert_not_awaited()


if __name__ == '__main__':
    unittest.main()
