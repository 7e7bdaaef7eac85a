"""
Tests for cached analyzer execution and the changeset cache.
"""

import json
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from changelens.analysis import (
    Analyzer, CacheRelevance, Finding, FileSummaryAnalyzer, PathActivityAnalyzer
)
from changelens.cache import CacheContext, run_analyzers_with_cache
from changelens.config import ChangelensConfig
from changelens.diff import (
    DiffDocument, DiffFile, DiffHunk, DiffLine, FileStatus, LineKind, SkipReason, SkippedEntry
)
from changelens.exceptions import ValidationError


def make_file(path, added="x = 1", status=FileStatus.MODIFIED):
    hunk = DiffHunk("@@ -1 +1 @@", 1, 1, 1, 1, [DiffLine(LineKind.DEL, "x = 0"),
                                                DiffLine(LineKind.ADD, added)])
    return DiffFile(path=path, status=status, stats={'added': 1, 'removed': 1}, hunks=[hunk])


class CountingAnalyzer(Analyzer):

    def __init__(self, name="counting", cache=None, fail=False):
        self.name = name
        self.cache = cache
        self.fail = fail
        self.calls = 0

    async def analyze(self, document):
        self.calls += 1
        if self.fail:
            raise RuntimeError("analyzer crashed")
        return [Finding('count', {'files': len(document.files)})]


class CacheTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name
        self.git = MagicMock(cwd=self.root)
        self.document = DiffDocument(files=[make_file("src/a.py"), make_file("docs/guide.md")],
                                     changed_file_count=2, mode="unstaged")

    def tearDown(self):
        self._tmp.cleanup()

    def context(self, **overrides):
        return CacheContext.create(ChangelensConfig(**overrides), self.git, root=self.root)


class TestRunAnalyzersWithCache(CacheTestCase):
    """Test cases for analyzer caching."""

    async def test_second_run_hits(self):
        analyzer = CountingAnalyzer()

        first = await run_analyzers_with_cache([analyzer], self.document, self.context(), "cs-1")
        second = await run_analyzers_with_cache([analyzer], self.document, self.context(), "cs-1")

        self.assertEqual(analyzer.calls, 1)
        self.assertEqual(first, second)
        self.assertEqual(second['counting'][0].data, {'files': 2})
        stats = self.context().index.stats()
        self.assertEqual((stats['hits'], stats['misses']), (1, 1))
        self.assertEqual(stats['entriesByCategory'], {'per-analyzer:counting': 1})

    async def test_changeset_key_change_misses(self):
        analyzer = CountingAnalyzer()

        await run_analyzers_with_cache([analyzer], self.document, self.context(), "cs-1")
        await run_analyzers_with_cache([analyzer], self.document, self.context(), "cs-2")

        self.assertEqual(analyzer.calls, 2)

    async def test_index_committed_once_per_run(self):
        context = self.context()
        analyzers = [CountingAnalyzer("one"), CountingAnalyzer("two"), FileSummaryAnalyzer()]

        with patch.object(context.index, 'commit', wraps=context.index.commit) as commit:
            results = await run_analyzers_with_cache(analyzers, self.document, context, "cs-1")

        commit.assert_called_once()
        self.assertEqual(sorted(results), ["file-summary", "one", "two"])
        self.assertEqual(context.index.stats()['entries'], 3)

    async def test_relevance_scoped_key_ignores_other_files(self):
        analyzer = CountingAnalyzer("src-only", CacheRelevance(("src/**",)))
        changed_docs = DiffDocument(files=[make_file("src/a.py"), make_file("docs/guide.md", "y = 2")],
                                    changed_file_count=2, mode="unstaged")
        changed_src = DiffDocument(files=[make_file("src/a.py", "x = 2"), make_file("docs/guide.md")],
                                   changed_file_count=2, mode="unstaged")

        await run_analyzers_with_cache([analyzer], self.document, self.context(), "cs-1")
        await run_analyzers_with_cache([analyzer], changed_docs, self.context(), "cs-2")
        self.assertEqual(analyzer.calls, 1)

        await run_analyzers_with_cache([analyzer], changed_src, self.context(), "cs-3")
        self.assertEqual(analyzer.calls, 2)

    async def test_failing_analyzer_still_commits(self):
        good = CountingAnalyzer("good")
        bad = CountingAnalyzer("bad", fail=True)

        with self.assertRaises(RuntimeError):
            await run_analyzers_with_cache([good, bad], self.document, self.context(concurrency=1), "cs-1")

        self.assertEqual(self.context().index.stats()['entriesByCategory'], {'per-analyzer:good': 1})

    async def test_corrupt_entry_is_a_miss(self):
        analyzer = CountingAnalyzer()
        context = self.context()
        await run_analyzers_with_cache([analyzer], self.document, context, "cs-1")

        key = context.keys.consumer_key("counting", self.document, None, "cs-1")
        path = context.paths.analyzer_path("counting", key)
        path.write_text(json.dumps({'schemaVersion': "1.2", 'cliVersion': context.version,
                                    'findings': [{'data': {}}]}), encoding='utf-8')

        await run_analyzers_with_cache([analyzer], self.document, self.context(), "cs-1")
        self.assertEqual(analyzer.calls, 2)

    async def test_disabled_cache_runs_directly(self):
        analyzer = CountingAnalyzer()
        context = self.context(cache_enabled=False)

        await run_analyzers_with_cache([analyzer], self.document, context, "cs-1")
        await run_analyzers_with_cache([analyzer], self.document, context, "cs-1")

        self.assertEqual(analyzer.calls, 2)
        self.assertFalse(context.paths.index_path.exists())

    async def test_path_activity_findings(self):
        analyzer = PathActivityAnalyzer("src-activity", ["src/**"])
        findings = await analyzer.analyze(self.document)

        self.assertEqual([f.data['path'] for f in findings], ["src/a.py"])
        self.assertEqual(findings[0].data['hunks'], 1)

    async def test_file_summary_findings(self):
        self.document.skipped.append(SkippedEntry("logo.png", SkipReason.BINARY))
        findings = await FileSummaryAnalyzer().analyze(self.document)

        self.assertEqual(findings[0].data, {'byStatus': {'modified': 2}, 'linesAdded': 2,
                                            'linesRemoved': 2, 'skipped': 1})


class TestChangeSetCache(CacheTestCase):
    """Test cases for the whole-changeset cache."""

    async def test_get_or_collect(self):
        context = self.context()
        calls = []

        async def collect():
            calls.append(1)
            return self.document

        first = await context.changesets.get_or_collect("key-1", collect, {'mode': 'unstaged'})
        context.commit()
        second = await context.changesets.get_or_collect("key-1", collect)
        context.commit()

        self.assertEqual(len(calls), 1)
        self.assertEqual(first.to_dict(), second.to_dict())
        stats = context.index.stats()
        self.assertEqual((stats['hits'], stats['misses']), (1, 1))
        self.assertEqual(stats['entriesByCategory'], {'changeset': 1})

    async def test_version_change_invalidates(self):
        self.context().changesets.save("key-1", self.document)
        newer = CacheContext.create(ChangelensConfig(), self.git, root=self.root, version="9.9.9")
        self.assertIsNone(newer.changesets.load("key-1"))


class TestFinding(unittest.TestCase):
    """Test cases for finding payloads."""

    def test_round_trip(self):
        finding = Finding('note', {'path': "a.py", 'count': 3})
        self.assertEqual(Finding.from_dict(finding.to_dict()), finding)

    def test_malformed(self):
        for payload in ({'data': {}}, {'kind': "x", 'data': []}, "oops"):
            with self.assertRaises(ValidationError):
                Finding.from_dict(payload)

    def test_relevance_tuples(self):
        relevance = CacheRelevance(["src/**"], ["*.md"])
        self.assertEqual(relevance.include_globs, ("src/**",))
        self.assertEqual(hash(relevance), hash(CacheRelevance(("src/**",), ("*.md",))))


if __name__ == '__main__':
    unittest.main()
