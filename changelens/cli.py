"""
Command-line interface for changelens.

Sub-commands:
    dump-diff      emit the structured diff of a changeset
    analyze        run the built-in analyzers over a changeset, with caching
    cache          inspect and maintain the result cache
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple

from . import __version__
from .analysis import FileSummaryAnalyzer, PathActivityAnalyzer, Analyzer
from .cache import CacheContext, run_analyzers_with_cache
from .changeset import DiffCollector, DiffOptions
from .config import ChangelensConfig, resolve_config
from .diff import DiffDocument, chunk_by_budget, render_chunk_text
from .exceptions import ChangelensError, GitOperationError
from .git import GitOperations, DiffMode
from .utils import BoundedFetcher, LoggingManager

logger = logging.getLogger('changelens.cli')


def _add_changeset_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--mode', choices=[m.value for m in DiffMode], default=DiffMode.UNSTAGED.value,
                        help='Which trees to compare (default: unstaged)')
    parser.add_argument('--base', type=str, help='Base ref for branch mode')
    parser.add_argument('--head', type=str, help='Head ref for branch mode')
    parser.add_argument('-U', '--unified', type=int, help='Context lines per hunk')
    parser.add_argument('--include', action='append', default=[], metavar='GLOB',
                        help='Only include matching files (repeatable)')
    parser.add_argument('--exclude', action='append', default=[], metavar='GLOB',
                        help='Exclude matching files (repeatable)')
    parser.add_argument('--no-untracked', action='store_true',
                        help='Ignore untracked files')
    parser.add_argument('--patch-for', type=str, metavar='PATH',
                        help='Restrict output to one changed file or directory')
    parser.add_argument('--max-file-chars', type=int,
                        help='Skip files whose diff is larger than this')
    parser.add_argument('--no-cache', action='store_true', help='Bypass the result cache')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='changelens',
                                     description='Structured git changesets with a result cache')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-c', '--config', type=str, help='Path to specific config file')
    parser.add_argument('-C', '--cwd', type=str, help='Run as if started in this directory')
    parser.add_argument('-v', '--verbose', action='store_true', help='Show debug output')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only show errors')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    dump_parser = subparsers.add_parser('dump-diff', help='Emit the structured diff')
    _add_changeset_arguments(dump_parser)
    detail = dump_parser.add_mutually_exclusive_group()
    detail.add_argument('--name-only', action='store_true', help='List files without hunks')
    detail.add_argument('--stat', action='store_true', help='Line counts without hunks')
    dump_parser.add_argument('--format', choices=['json', 'text'], default='json')
    dump_parser.add_argument('--pretty', action='store_true', help='Indent JSON output')
    dump_parser.add_argument('--out', type=str, help='Write output to a file instead of stdout')
    dump_parser.add_argument('--max-chars', type=int,
                             help='Split text output into chunks of at most this many characters')
    dump_parser.add_argument('--chunk-dir', type=str,
                             help='Directory for chunk files (default: <state dir>/chunks)')
    dump_parser.add_argument('--name', type=str, default='diff', help='Chunk file name prefix')

    analyze_parser = subparsers.add_parser('analyze', help='Run analyzers over the changeset')
    _add_changeset_arguments(analyze_parser)
    analyze_parser.add_argument('--watch', action='append', default=[], metavar='GLOB',
                                help='Report line activity for files matching GLOB (repeatable)')
    analyze_parser.add_argument('--pretty', action='store_true', help='Indent JSON output')

    cache_parser = subparsers.add_parser('cache', help='Cache management')
    cache_subparsers = cache_parser.add_subparsers(dest='cache_action')
    stats_parser = cache_subparsers.add_parser('stats', help='Show cache statistics')
    stats_parser.add_argument('--json', action='store_true', help='Print statistics as JSON')
    cache_subparsers.add_parser('clear', help='Delete all cached data')
    prune_parser = cache_subparsers.add_parser('prune', help='Remove old cache entries')
    prune_parser.add_argument('--max-age-days', type=int, help='Age limit (default from config)')

    return parser


def build_diff_options(args: argparse.Namespace, config: ChangelensConfig) -> DiffOptions:
    return DiffOptions(
        mode=DiffMode(args.mode),
        base=args.base,
        head=args.head,
        unified=args.unified if args.unified is not None else config.unified,
        include=list(args.include),
        exclude=list(args.exclude),
        include_untracked=not args.no_untracked,
        patch_for=args.patch_for,
        name_only=getattr(args, 'name_only', False),
        stat_only=getattr(args, 'stat', False),
        max_file_chars=args.max_file_chars,
    )


class ChangelensApp:
    """Wires configuration, git, collector and cache for one invocation."""

    def __init__(self, config: ChangelensConfig, cwd: Optional[str] = None, stdout=None):
        self.config = config
        self.git = GitOperations(cwd)
        self.collector = DiffCollector(self.git, BoundedFetcher(config.concurrency))
        self.stdout = stdout if stdout is not None else sys.stdout
        self._context: Optional[CacheContext] = None

    async def cache_context(self) -> CacheContext:
        if self._context is None:
            try:
                root = await self.git.repo_root()
            except GitOperationError:
                root = self.git.cwd
            self._context = CacheContext.create(self.config, self.git, root)
        return self._context

    async def load_document(self, options: DiffOptions) -> Tuple[DiffDocument, Optional[str]]:
        """
        Collect the changeset, through the changeset cache when enabled.

        Returns:
            ``(document, changeset_key)``; the key is None when caching is off
        """
        options.validate()
        if not self.config.cache_enabled:
            return await self.collector.collect(options), None

        await self.git.ensure_repository()
        context = await self.cache_context()
        try:
            key = await context.keys.changeset_key(options, self.git, context.refs)
        except GitOperationError as e:
            logger.warning(f"Changeset cache disabled for this run: {e}")
            return await self.collector.collect(options), None

        metadata = {
            'mode': options.mode.value,
            'base': options.base,
            'head': options.head,
            'include': options.include,
            'exclude': options.exclude,
        }
        document = await context.changesets.get_or_collect(
            key, lambda: self.collector.collect(options), metadata)
        return document, key

    async def dump_diff(self, args: argparse.Namespace) -> int:
        options = build_diff_options(args, self.config)
        try:
            document, _ = await self.load_document(options)
        finally:
            if self._context is not None:
                self._context.commit()

        if args.format == 'text':
            return await self._write_text(document, args)
        indent = 2 if args.pretty else None
        self._emit(json.dumps(document.to_dict(), indent=indent, ensure_ascii=False) + "\n", args.out)
        return 0

    async def _chunk_dir(self, args: argparse.Namespace) -> Path:
        if args.chunk_dir:
            return Path(self.git.cwd) / args.chunk_dir
        paths = (await self.cache_context()).paths
        paths.ensure_state_dir()
        return paths.chunks_dir

    async def _write_text(self, document: DiffDocument, args: argparse.Namespace) -> int:
        items = [(f.path, f.render_text()) for f in document.files]
        total = sum(len(text) for _, text in items)
        if not args.max_chars or total <= args.max_chars:
            self._emit(render_chunk_text(items), args.out)
            return 0

        chunk_dir = await self._chunk_dir(args)
        chunk_dir.mkdir(parents=True, exist_ok=True)
        chunks = chunk_by_budget(items, args.max_chars)
        written = []
        for number, chunk in enumerate(chunks, 1):
            path = chunk_dir / f"{args.name}-{number:03d}.txt"
            path.write_text(render_chunk_text(chunk), encoding='utf-8')
            written.append(str(path))
        logger.info(f"Diff of {total} chars split into {len(chunks)} chunks in {chunk_dir}")
        self._emit("".join(p + "\n" for p in written), args.out)
        return 0

    async def analyze(self, args: argparse.Namespace) -> int:
        options = build_diff_options(args, self.config)
        analyzers: List[Analyzer] = [FileSummaryAnalyzer()]
        if args.watch:
            analyzers.append(PathActivityAnalyzer('path-activity', args.watch))

        try:
            document, key = await self.load_document(options)
            context = await self.cache_context()
            results = await run_analyzers_with_cache(analyzers, document, context, key)
        finally:
            if self._context is not None:
                self._context.commit()

        output: Dict[str, Any] = {
            'summary': document.summary(),
            'findings': {name: [f.to_dict() for f in findings] for name, findings in results.items()},
        }
        indent = 2 if args.pretty else None
        self._emit(json.dumps(output, indent=indent, ensure_ascii=False) + "\n", None)
        return 0

    async def cache_command(self, args: argparse.Namespace) -> int:
        context = await self.cache_context()
        if args.cache_action == 'stats':
            stats = context.index.stats()
            if args.json:
                self._emit(json.dumps(stats, indent=2) + "\n", None)
            else:
                self._emit(format_stats(stats), None)
        elif args.cache_action == 'clear':
            removed = context.index.clear()
            self._emit(f"Cleared {removed} cache entries\n", None)
        elif args.cache_action == 'prune':
            removed = context.index.prune(args.max_age_days)
            self._emit(f"Pruned {removed} cache entries\n", None)
        else:
            raise ChangelensError("Specify a cache action: stats, clear or prune")
        return 0

    def _emit(self, text: str, out: Optional[str]) -> None:
        if out:
            Path(out).write_text(text, encoding='utf-8')
            logger.info(f"Wrote {out}")
        else:
            self.stdout.write(text)


def format_stats(stats: Dict[str, Any]) -> str:
    lines = [
        f"Entries:   {stats['entries']}",
        f"Size:      {stats['sizeHuman']}",
        f"Hits:      {stats['hits']}",
        f"Misses:    {stats['misses']}",
        f"Hit rate:  {stats['hitRate']}%",
        f"Oldest:    {stats['oldestEntry'] or '-'}",
        f"Newest:    {stats['newestEntry'] or '-'}",
    ]
    for category, count in stats['entriesByCategory'].items():
        lines.append(f"  {category}: {count}")
    return "\n".join(lines) + "\n"


async def run(args: argparse.Namespace, config: ChangelensConfig) -> int:
    app = ChangelensApp(config, args.cwd)
    if args.command == 'dump-diff':
        return await app.dump_diff(args)
    if args.command == 'analyze':
        return await app.analyze(args)
    if args.command == 'cache':
        return await app.cache_command(args)
    raise ChangelensError("No command given; see --help")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help(sys.stderr)
        return 1

    overrides = {}
    if getattr(args, 'no_cache', False):
        overrides['cache_enabled'] = False

    try:
        config = resolve_config(overrides, config_path=args.config, cwd=args.cwd)
    except ChangelensError as e:
        print(f"changelens: {e}", file=sys.stderr)
        return e.exit_code

    LoggingManager(config.log_level, quiet=args.quiet, verbose=args.verbose, log_path=config.log_path)

    try:
        return asyncio.run(run(args, config))
    except ChangelensError as e:
        logger.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
