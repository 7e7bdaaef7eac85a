"""
Tests for changeset collection with a mocked git runner.
"""

import os
import shutil
import subprocess
import tempfile
import unittest
from unittest.mock import AsyncMock, MagicMock

from changelens.changeset import DiffCollector, DiffOptions, is_binary_no_index_diff
from changelens.diff import DiffDocument, FileStatus, SkipReason
from changelens.exceptions import (
    GitOperationError, InvalidRefError, PatchTargetNotFoundError, ValidationError
)
from changelens.git import DiffMode, GitOperations
from changelens.utils import BoundedFetcher

A_DIFF = (
    "diff --git a/src/a.py b/src/a.py\n"
    "index 1111111..2222222 100644\n"
    "--- a/src/a.py\n"
    "+++ b/src/a.py\n"
    "@@ -1 +1 @@\n"
    "-print('a')\n"
    "+print('b')\n"
)
RENAME_DIFF = (
    "diff --git a/lib/old.py b/lib/new.py\n"
    "similarity index 95%\n"
    "rename from lib/old.py\n"
    "rename to lib/new.py\n"
    "--- a/lib/old.py\n"
    "+++ b/lib/new.py\n"
    "@@ -3,0 +4 @@\n"
    "+VALUE = 1\n"
)
LOCK_DIFF = (
    "diff --git a/package-lock.json b/package-lock.json\n"
    "--- a/package-lock.json\n"
    "+++ b/package-lock.json\n"
    "@@ -2 +2 @@\n"
    "-  \"version\": \"1\"\n"
    "+  \"version\": \"2\"\n"
)
NOTES_DIFF = (
    "diff --git a/notes.txt b/notes.txt\n"
    "new file mode 100644\n"
    "--- /dev/null\n"
    "+++ b/notes.txt\n"
    "@@ -0,0 +1,2 @@\n"
    "+hello\n"
    "+world\n"
)
BLOB_DIFF = (
    "diff --git a/blob.bin b/blob.bin\n"
    "new file mode 100644\n"
    "Binary files /dev/null and b/blob.bin differ\n"
)

NAME_STATUS = (
    "M\0src/a.py\0"
    "M\0assets/logo.png\0"
    "R095\0lib/old.py\0lib/new.py\0"
    "M\0package-lock.json\0"
)
NUMSTAT = (
    "1\t1\tsrc/a.py\0"
    "-\t-\tassets/logo.png\0"
    "1\t0\t\0lib/old.py\0lib/new.py\0"
    "1\t1\tpackage-lock.json\0"
)
PER_FILE = {
    "src/a.py": A_DIFF,
    "lib/new.py": RENAME_DIFF,
    "package-lock.json": LOCK_DIFF,
}
PER_FILE_NUMSTAT = {
    "src/a.py": "1\t1\tsrc/a.py\0",
    "assets/logo.png": "-\t-\tassets/logo.png\0",
    "lib/new.py": "1\t0\t\0lib/old.py\0lib/new.py\0",
    "package-lock.json": "1\t1\tpackage-lock.json\0",
}


class CollectorTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        git = MagicMock()
        git.ensure_repository = AsyncMock(return_value=None)
        git.ref_exists = AsyncMock(return_value=True)
        git.name_status = AsyncMock(return_value=NAME_STATUS)
        git.untracked_files = AsyncMock(return_value="notes.txt\0blob.bin\0")

        async def numstat(mode, base=None, head=None, paths=None):
            if paths:
                return "".join(PER_FILE_NUMSTAT.get(p, "") for p in paths)
            return NUMSTAT

        async def untracked_file_diff(path, unified=0):
            return {"notes.txt": NOTES_DIFF, "blob.bin": BLOB_DIFF}[path]

        async def file_diff(mode, path, base=None, head=None, unified=0, old_path=None):
            return PER_FILE.get(path, "")

        git.numstat = AsyncMock(side_effect=numstat)
        git.untracked_file_diff = AsyncMock(side_effect=untracked_file_diff)
        git.full_diff = AsyncMock(return_value=A_DIFF + RENAME_DIFF + LOCK_DIFF)
        git.file_diff = AsyncMock(side_effect=file_diff)
        self.git = git
        self.collector = DiffCollector(git, BoundedFetcher(limit=2))

    def skipped(self, document):
        return {s.path: s.reason for s in document.skipped}


class TestDiffCollector(CollectorTestCase):
    """Test cases for the main collection pipeline."""

    async def test_collect_classifies_and_parses(self):
        document = await self.collector.collect(DiffOptions())

        self.assertEqual([f.path for f in document.files], ["lib/new.py", "notes.txt", "src/a.py"])
        self.assertEqual(self.skipped(document), {
            "package-lock.json": SkipReason.EXCLUDED_BY_DEFAULT,
            "assets/logo.png": SkipReason.BINARY,
            "blob.bin": SkipReason.BINARY,
        })
        self.assertEqual(document.changed_file_count, 6)

        by_path = {f.path: f for f in document.files}
        self.assertEqual(by_path["src/a.py"].stats, {'added': 1, 'removed': 1})
        self.assertEqual(by_path["lib/new.py"].old_path, "lib/old.py")
        self.assertEqual(by_path["lib/new.py"].status, FileStatus.RENAMED)
        self.assertTrue(by_path["notes.txt"].untracked)
        self.assertEqual(by_path["notes.txt"].stats, {'added': 2, 'removed': 0})
        self.assertEqual(by_path["notes.txt"].hunks[0].added, ["hello", "world"])

        self.assertEqual(self.git.numstat.await_count, 1)
        self.assertEqual(self.git.full_diff.await_count, 1)
        self.git.file_diff.assert_not_awaited()

    async def test_document_serialization(self):
        data = (await self.collector.collect(DiffOptions())).to_dict()

        self.assertEqual(data['schemaVersion'], "2.0")
        self.assertEqual(data['summary']['changedFileCount'], 6)
        self.assertEqual(data['summary']['includedFileCount'], 3)
        self.assertEqual(data['summary']['skippedFileCount'], 3)
        self.assertGreater(data['summary']['totalChars'], 0)
        renamed = next(f for f in data['files'] if f['path'] == "lib/new.py")
        self.assertEqual(renamed['oldPath'], "lib/old.py")
        self.assertEqual(renamed['hunks'][0]['newStart'], 4)

    async def test_cached_form_matches_emitted_document(self):
        document = await self.collector.collect(DiffOptions())
        restored = DiffDocument.from_dict(document.to_dict())

        self.assertEqual(restored.to_dict(), document.to_dict())
        self.assertEqual([f.render_text() for f in restored.files],
                         [f.render_text() for f in document.files])
        renamed = next(f for f in restored.files if f.path == "lib/new.py")
        self.assertEqual(renamed.render_text(),
                         "diff --git a/lib/old.py b/lib/new.py\n"
                         "rename from lib/old.py\nrename to lib/new.py\n"
                         "--- a/lib/old.py\n+++ b/lib/new.py\n"
                         "@@ -3,0 +4 @@\n+VALUE = 1\n")

    async def test_empty_split_falls_back_to_single_file(self):
        self.git.full_diff.return_value = A_DIFF

        document = await self.collector.collect(DiffOptions())

        self.assertIn("lib/new.py", [f.path for f in document.files])
        self.git.file_diff.assert_awaited_once_with(
            DiffMode.UNSTAGED, "lib/new.py", None, None, 0, "lib/old.py")

    async def test_bulk_diff_failure_falls_back(self):
        self.git.full_diff.side_effect = GitOperationError("git diff", "boom")

        with self.assertLogs('changelens.changeset', level='WARNING'):
            document = await self.collector.collect(DiffOptions())

        self.assertEqual([f.path for f in document.files], ["lib/new.py", "notes.txt", "src/a.py"])
        self.assertEqual(self.git.file_diff.await_count, 2)

    async def test_bulk_numstat_failure_falls_back(self):
        original = self.git.numstat.side_effect

        async def flaky(mode, base=None, head=None, paths=None):
            if not paths:
                raise GitOperationError("git diff --numstat", "boom")
            return await original(mode, base, head, paths)

        self.git.numstat.side_effect = flaky
        with self.assertLogs('changelens.changeset', level='WARNING'):
            document = await self.collector.collect(DiffOptions())

        self.assertEqual(self.skipped(document)["assets/logo.png"], SkipReason.BINARY)
        self.assertEqual(self.git.numstat.await_count, 4)

    async def test_empty_diff_is_skipped(self):
        self.git.full_diff.return_value = RENAME_DIFF
        self.git.file_diff = AsyncMock(return_value="")

        document = await self.collector.collect(DiffOptions())

        self.assertEqual(self.skipped(document)["src/a.py"], SkipReason.DIFF_EMPTY)
        self.git.file_diff.assert_awaited_once()

    async def test_name_only(self):
        document = await self.collector.collect(DiffOptions(name_only=True))

        self.assertEqual(len(document.files), 3)
        self.assertTrue(all(f.hunks is None and f.stats is None for f in document.files))
        self.git.full_diff.assert_not_awaited()

    async def test_stat_only(self):
        document = await self.collector.collect(DiffOptions(stat_only=True))

        self.assertTrue(all(f.hunks is None for f in document.files))
        self.assertEqual({f.path: f.stats['added'] for f in document.files},
                         {"lib/new.py": 1, "notes.txt": 2, "src/a.py": 1})

    async def test_too_large(self):
        document = await self.collector.collect(DiffOptions(max_file_chars=len(A_DIFF) - 1))
        self.assertEqual(self.skipped(document)["src/a.py"], SkipReason.TOO_LARGE)

    async def test_user_globs(self):
        document = await self.collector.collect(DiffOptions(include=["src/**", "lib/**"],
                                                            exclude=["lib/**"]))
        self.assertEqual([f.path for f in document.files], ["src/a.py"])
        self.assertEqual(self.skipped(document)["lib/new.py"], SkipReason.EXCLUDED_BY_GLOB)
        self.assertEqual(self.skipped(document)["notes.txt"], SkipReason.NOT_INCLUDED)

    async def test_untracked_diff_failure(self):
        async def failing_diff(path, unified=0):
            if path == "notes.txt":
                raise GitOperationError("git diff --no-index", "No such file")
            return BLOB_DIFF

        self.git.untracked_file_diff.side_effect = failing_diff
        with self.assertLogs('changelens.changeset', level='WARNING'):
            document = await self.collector.collect(DiffOptions())
        self.assertEqual(self.skipped(document)["notes.txt"], SkipReason.NOT_FOUND)


class TestCollectorModes(CollectorTestCase):
    """Test cases for modes, refs and patch targets."""

    async def test_branch_mode_skips_untracked(self):
        document = await self.collector.collect(DiffOptions(mode=DiffMode.BRANCH, base="main", head="topic"))

        self.git.untracked_files.assert_not_awaited()
        self.assertEqual(document.changed_file_count, 4)
        self.assertEqual((document.base, document.head), ("main", "topic"))

    async def test_invalid_ref(self):
        self.git.ref_exists.side_effect = lambda ref: ref != "nope"
        with self.assertRaises(InvalidRefError):
            await self.collector.collect(DiffOptions(mode=DiffMode.BRANCH, base="nope", head="topic"))

    async def test_branch_mode_requires_refs(self):
        with self.assertRaises(ValidationError):
            await self.collector.collect(DiffOptions(mode=DiffMode.BRANCH, base="main"))

    async def test_no_untracked(self):
        document = await self.collector.collect(DiffOptions(include_untracked=False))
        self.git.untracked_files.assert_not_awaited()
        self.assertNotIn("notes.txt", [f.path for f in document.files])

    async def test_patch_for_directory(self):
        document = await self.collector.collect(DiffOptions(patch_for="src/"))

        self.assertEqual([f.path for f in document.files], ["src/a.py"])
        skipped = self.skipped(document)
        self.assertEqual(skipped["lib/new.py"], SkipReason.PATCH_FOR_MISMATCH)
        self.assertEqual(skipped["notes.txt"], SkipReason.PATCH_FOR_MISMATCH)
        self.assertEqual(len(document.files) + len(document.skipped), document.changed_file_count)

    async def test_patch_for_bypasses_default_excludes(self):
        document = await self.collector.collect(DiffOptions(patch_for="package-lock.json"))
        self.assertEqual([f.path for f in document.files], ["package-lock.json"])

    async def test_patch_for_respects_user_excludes(self):
        document = await self.collector.collect(DiffOptions(patch_for="src", exclude=["src/**"]))
        self.assertEqual(document.files, [])
        self.assertEqual(self.skipped(document)["src/a.py"], SkipReason.EXCLUDED_BY_GLOB)

    async def test_patch_for_not_found(self):
        with self.assertRaises(PatchTargetNotFoundError) as ctx:
            await self.collector.collect(DiffOptions(patch_for="missing/dir"))
        self.assertEqual(ctx.exception.selector, "missing/dir")

    def test_binary_no_index_detection(self):
        self.assertTrue(is_binary_no_index_diff(BLOB_DIFF))
        self.assertFalse(is_binary_no_index_diff(NOTES_DIFF))



@unittest.skipUnless(shutil.which('git'), "git is not installed")
class TestCollectorWithGit(unittest.IsolatedAsyncioTestCase):
    """End-to-end collection against a scratch repository."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name
        self.git_cmd('init', '-q')
        self.write('app.py', "a = 1\nb = 2\n")
        self.write('old_name.py', "keep = True\n" * 5)
        self.git_cmd('add', '.')
        self.git_cmd('commit', '-q', '-m', 'initial')
        self.collector = DiffCollector(GitOperations(self.root))

    def tearDown(self):
        self._tmp.cleanup()

    def git_cmd(self, *args):
        subprocess.run(['git', '-c', 'user.name=Test', '-c', 'user.email=test@example.com',
                        '-c', 'commit.gpgsign=false', *args],
                       cwd=self.root, check=True, capture_output=True)

    def write(self, name, content, mode='w'):
        with open(os.path.join(self.root, name), mode) as f:
            f.write(content)

    async def test_unstaged_with_untracked(self):
        self.write('app.py', "a = 1\nb = 3\n")
        self.write('notes.txt', "todo\n")
        self.write('image.bin', b"\x00\x01\x02\xff" * 8, mode='wb')

        document = await self.collector.collect(DiffOptions())

        self.assertEqual([f.path for f in document.files], ["app.py", "notes.txt"])
        app = document.files[0]
        self.assertEqual(app.stats, {'added': 1, 'removed': 1})
        self.assertEqual(app.hunks[0].removed, ["b = 2"])
        self.assertEqual(app.hunks[0].added, ["b = 3"])
        self.assertEqual(self.skipped(document), {"image.bin": SkipReason.BINARY})

    async def test_staged_rename(self):
        self.git_cmd('mv', 'old_name.py', 'new_name.py')

        document = await self.collector.collect(DiffOptions(mode=DiffMode.STAGED))

        self.assertEqual(document.changed_file_count, 1)
        renamed = document.files[0]
        self.assertEqual((renamed.path, renamed.old_path), ("new_name.py", "old_name.py"))
        self.assertEqual(renamed.status, FileStatus.RENAMED)
        self.assertEqual(renamed.hunks, [])

    async def test_branch_mode(self):
        self.write('app.py', "a = 1\nb = 2\nc = 3\n")
        self.git_cmd('commit', '-q', '-am', 'second')

        document = await self.collector.collect(DiffOptions(mode=DiffMode.BRANCH,
                                                            base="HEAD~1", head="HEAD"))

        self.assertEqual([f.path for f in document.files], ["app.py"])
        self.assertEqual(document.files[0].hunks[0].added, ["c = 3"])

        with self.assertRaises(InvalidRefError):
            await self.collector.collect(DiffOptions(mode=DiffMode.BRANCH,
                                                     base="no-such-branch", head="HEAD"))

    def skipped(self, document):
        return {s.path: s.reason for s in document.skipped}


if __name__ == '__main__':
    unittest.main()
