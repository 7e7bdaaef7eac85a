"""
Cached execution of analyzers.

All analyzers of a run execute concurrently. Each one reads and writes its own
document file independently; index changes are collected in the context's
batch and committed once when every analyzer has finished.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..analysis import Analyzer, Finding
from ..diff import DiffDocument
from ..exceptions import CacheError, ValidationError
from ..utils import limit_concurrency, utc_now_iso
from .context import CacheContext
from .index import CacheEntryMeta, CACHE_SCHEMA_VERSION
from .paths import analyzer_category

logger = logging.getLogger(__name__)


def _load_findings(context: CacheContext, analyzer: Analyzer, key: str) -> Optional[List[Finding]]:
    data = context.store.read_json(context.paths.analyzer_path(analyzer.name, key))
    if not isinstance(data, dict):
        return None
    if data.get('schemaVersion') != CACHE_SCHEMA_VERSION or data.get('cliVersion') != context.version:
        return None
    try:
        return [Finding.from_dict(item) for item in data['findings']]
    except (KeyError, TypeError, ValidationError) as e:
        logger.debug(f"Discarding cached findings of {analyzer.name}: {e}")
        return None


def _store_findings(context: CacheContext, analyzer: Analyzer, key: str,
                    findings: List[Finding], document: DiffDocument) -> None:
    now = utc_now_iso()
    payload = {
        'schemaVersion': CACHE_SCHEMA_VERSION,
        'cliVersion': context.version,
        'analyzer': analyzer.name,
        'key': key,
        'createdAt': now,
        'processedFiles': [f.path for f in document.files],
        'findings': [finding.to_dict() for finding in findings],
    }
    try:
        size = context.store.write_json(context.paths.analyzer_path(analyzer.name, key), payload)
    except CacheError as e:
        logger.warning(f"Could not cache findings of {analyzer.name}: {e}")
        return
    context.batch.add(CacheEntryMeta(key, analyzer_category(analyzer.name), now, now, size,
                                     context.version))


async def run_analyzer_with_cache(analyzer: Analyzer, document: DiffDocument,
                                  context: CacheContext,
                                  changeset_key: Optional[str] = None) -> List[Finding]:
    """
    Run one analyzer, reusing cached findings when its key matches.

    Args:
        analyzer: The consumer to run
        document: Structured changeset
        context: Cache context of this invocation
        changeset_key: Key of the changeset, used by analyzers without relevance globs

    Returns:
        The analyzer's findings
    """
    if not context.enabled:
        return await analyzer.analyze(document)

    key = context.keys.consumer_key(analyzer.name, document, analyzer.cache, changeset_key)
    cached = _load_findings(context, analyzer, key)
    if cached is not None:
        logger.debug(f"Cache hit for {analyzer.name} ({key})")
        context.batch.record_hit(analyzer_category(analyzer.name), key)
        return cached

    context.batch.record_miss()
    findings = await analyzer.analyze(document)
    _store_findings(context, analyzer, key, findings, document)
    return findings


async def run_analyzers_with_cache(analyzers: Sequence[Analyzer], document: DiffDocument,
                                   context: CacheContext,
                                   changeset_key: Optional[str] = None) -> Dict[str, List[Finding]]:
    """
    Run analyzers concurrently with caching and one index update at the end.

    Orphaned cache files are removed before any analyzer runs; files written
    earlier in the run and not yet committed are kept.

    Returns:
        Findings keyed by analyzer name
    """
    if context.enabled:
        context.index.cleanup_orphans(pending=context.batch.pending)

    factories = [
        lambda analyzer=analyzer: run_analyzer_with_cache(analyzer, document, context, changeset_key)
        for analyzer in analyzers
    ]
    try:
        results = await limit_concurrency(factories, context.config.concurrency)
    finally:
        context.commit()
    return {analyzer.name: findings for analyzer, findings in zip(analyzers, results)}
