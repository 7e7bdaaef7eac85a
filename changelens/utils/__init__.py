"""
Utility modules for changelens.

Bounded async fan-out, logging configuration and small formatting helpers.
"""

import asyncio
import logging
import math
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar, Dict

from ..exceptions import ConfigurationError

T = TypeVar('T')

DEFAULT_CONCURRENCY = 8

logger = logging.getLogger(__name__)


async def limit_concurrency(factories: Sequence[Callable[[], Awaitable[T]]],
                            limit: int = DEFAULT_CONCURRENCY) -> List[T]:
    """
    Run coroutine factories with at most ``limit`` in flight.

    Args:
        factories: Zero-argument callables returning awaitables
        limit: Maximum number of concurrently running tasks

    Returns:
        Results in the order of ``factories``, independent of completion order

    Raises:
        Whatever the first failing task raised
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be at least 1, got {limit}")
    if not factories:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(run(factory)) for factory in factories]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class BoundedFetcher:
    """Runs independent fetch operations under a fixed concurrency ceiling."""

    def __init__(self, limit: int = DEFAULT_CONCURRENCY):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}")
        self.limit = limit
        self.started = 0
        self.max_in_flight = 0
        self._in_flight = 0

    async def _track(self, factory: Callable[[], Awaitable[T]]) -> T:
        self.started += 1
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            return await factory()
        finally:
            self._in_flight -= 1

    async def run(self, factories: Sequence[Callable[[], Awaitable[T]]]) -> List[T]:
        wrapped = [lambda f=f: self._track(f) for f in factories]
        results = await limit_concurrency(wrapped, self.limit)
        logger.debug(f"Fetched {len(results)} items (peak concurrency {self.max_in_flight}/{self.limit})")
        return results

    async def map(self, func: Callable[[Any], Awaitable[T]], items: Sequence[Any]) -> List[T]:
        return await self.run([lambda item=item: func(item) for item in items])

    def get_stats(self) -> Dict[str, int]:
        return {'limit': self.limit, 'started': self.started, 'max_in_flight': self.max_in_flight}


class LoggingManager:
    """Configures the ``changelens`` logger for one invocation."""

    LOGGER_NAME = 'changelens'
    MAX_LOG_FILE_SIZE = 10 * 1024 * 1024
    LOG_RETENTION_DAYS = 30

    def __init__(self, level: str = "info", quiet: bool = False, verbose: bool = False,
                 log_path: Optional[str] = None, stream=None):
        """
        Initialize logging manager.

        Args:
            level: Base console level name
            quiet: Only errors reach the console; wins over ``verbose``
            verbose: Enable debug output on the console
            log_path: Directory for log files, or None for console only
            stream: Console stream, stderr by default
        """
        self.level = level
        self.quiet = quiet
        self.verbose = verbose
        self.log_path = Path(log_path) if log_path else None
        self.stream = stream if stream is not None else sys.stderr
        self.log_file: Optional[Path] = None
        self.logger = logging.getLogger(self.LOGGER_NAME)
        self._setup_logging()

    def _console_level(self) -> int:
        if self.quiet:
            return logging.ERROR
        if self.verbose:
            return logging.DEBUG
        level = logging.getLevelName(self.level.upper())
        if not isinstance(level, int):
            raise ConfigurationError(f"Unknown log level: {self.level}")
        return level

    def _setup_logging(self) -> None:
        """Attach console and optional file handlers."""
        logger = self.logger
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        for handler in list(logger.handlers):
            if getattr(handler, '_changelens_handler', False):
                logger.removeHandler(handler)
                handler.close()

        console_handler = logging.StreamHandler(self.stream)
        console_handler.setLevel(self._console_level())
        console_handler.setFormatter(ColoredFormatter('%(levelname)s: %(message)s',
                                                      use_color=_is_tty(self.stream)))
        console_handler._changelens_handler = True
        logger.addHandler(console_handler)

        if self.log_path is not None:
            try:
                self.log_path.mkdir(parents=True, exist_ok=True)
                self.log_file = self._get_log_file_path()
                file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
            except OSError as e:
                logger.warning(f"File logging disabled: {e}")
            else:
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(SafeFormatter(
                    '%(asctime)s [%(levelname)s] %(name)s: %(message)s\nDetails: %(details)s\n',
                    datefmt='%Y-%m-%d %H:%M:%S'
                ))
                file_handler._changelens_handler = True
                logger.addHandler(file_handler)
                self._cleanup_old_logs()

    def _get_log_file_path(self) -> Path:
        """Get current log file path, rotating today's file when it is too large."""
        current_date = datetime.now().strftime("%Y%m%d")
        log_file = self.log_path / f'changelens_{current_date}.log'
        if log_file.exists() and log_file.stat().st_size > self.MAX_LOG_FILE_SIZE:
            timestamp = datetime.now().strftime("%H%M%S")
            log_file.rename(self.log_path / f'changelens_{current_date}_{timestamp}.log')
        return log_file

    def _cleanup_old_logs(self) -> None:
        cutoff = datetime.now().timestamp() - self.LOG_RETENTION_DAYS * 24 * 60 * 60
        for log_file in self.log_path.glob('changelens_*.log'):
            try:
                if log_file.stat().st_mtime < cutoff:
                    log_file.unlink()
                    self.logger.debug(f"Cleaned up old log file: {log_file}")
            except OSError as e:
                self.logger.debug(f"Log cleanup failed for {log_file}: {e}")

    def get_logger(self) -> logging.Logger:
        return self.logger

    def log_with_details(self, level: int, message: str, details: Optional[str] = None) -> None:
        extra = {'details': details if details else 'No additional details'}
        self.logger.log(level, message, extra=extra)


def _is_tty(stream) -> bool:
    isatty = getattr(stream, 'isatty', None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        return False


class SafeFormatter(logging.Formatter):
    """A logging formatter that safely handles missing 'details' field."""

    def format(self, record):
        if not hasattr(record, 'details'):
            record.details = 'No additional details'
        return super().format(record)


class ColoredFormatter(logging.Formatter):
    """Log formatter with color support for terminal output."""

    GREY = "\x1b[38;21m"
    BLUE = "\x1b[38;5;39m"
    YELLOW = "\x1b[38;5;226m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    def __init__(self, fmt: str, use_color: bool = True):
        super().__init__(fmt)
        self.fmt = fmt
        colors = {
            logging.DEBUG: self.GREY,
            logging.INFO: self.BLUE,
            logging.WARNING: self.YELLOW,
            logging.ERROR: self.RED,
            logging.CRITICAL: self.BOLD_RED,
        }
        self.FORMATS = {
            level: (color + fmt + self.RESET) if use_color else fmt
            for level, color in colors.items()
        }

    def format(self, record):
        formatter = logging.Formatter(self.FORMATS.get(record.levelno, self.fmt))
        return formatter.format(record)


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string
    """
    if size_bytes <= 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(size_names) - 1)
    p = math.pow(1024, i)
    s = round(size_bytes / p, 2)
    return f"{s} {size_names[i]}"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_iso(timestamp: str) -> Optional[datetime]:
    """Parse a timestamp written by utc_now_iso; None when malformed."""
    if not timestamp:
        return None
    try:
        return datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
    except ValueError:
        return None
