"""Observability utilities for jotnotes.

Provides persistent disk logging with rotation, timing of operations
and in-process metrics for flushes, scans and folder removals.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

# Default log directory (can be overridden via configure_logging)
DEFAULT_LOG_DIR = Path.home() / ".jotnotes" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB per file
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Sets up a rotating file handler for the jotnotes logger hierarchy.

    Args:
        log_dir: Directory for log files. Defaults to ~/.jotnotes/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 5 MB)
        backup_count: Number of rotated files to keep (default: 3)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger("jotnotes")
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "jotnotes.log"
    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.debug(f"Logging configured: {log_file}")

    return log_path


@dataclass
class OperationStats:
    """Running totals for one kind of operation."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class MetricsCollector:
    """Per-operation stats (flush, scan, remove_folder), shared by all threads."""

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record(self, operation: str, duration_ms: float, error: Optional[str] = None) -> None:
        """Add one finished operation. A non-None ``error`` counts as a failure."""
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if error is not None:
                stats.failures += 1
                stats.last_error = error

    def snapshot(self) -> Dict[str, OperationStats]:
        """Copies of the current stats keyed by operation name, sorted."""
        with self._lock:
            return {name: replace(stats) for name, stats in sorted(self._stats.items())}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


metrics = MetricsCollector()


def format_stats(snapshot: Dict[str, OperationStats]) -> List[str]:
    """One human-readable line per operation."""
    lines = []
    for name, stats in snapshot.items():
        line = (
            f"{name}: {stats.calls} run(s), {stats.failures} failed, "
            f"avg {stats.average_ms:.1f}ms, max {stats.slowest_ms:.1f}ms"
        )
        if stats.last_error:
            line += f", last error: {stats.last_error}"
        lines.append(line)
    return lines


def _pairs(values: Dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in values.items())


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block, record it in ``metrics`` and log it at debug level.

    The yielded dict collects results; they are logged with the end line.
    Exceptions are recorded as failures and re-raised.

    Example:
        with timed_operation("flush", ops=len(plan)) as op:
            result = self._apply(plan)
            op["written"] = len(result.written)
    """
    tag = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {}
    logger.debug(f"[{tag}] {operation} started {_pairs(context)}")
    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield info
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record(operation, elapsed_ms, error)
        outcome = "ok" if error is None else f"failed: {error}"
        logger.debug(f"[{tag}] {operation} {outcome} in {elapsed_ms:.2f}ms {_pairs(info)}")
