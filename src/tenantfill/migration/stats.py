"""
Run statistics and the structured audit log.

StatsAggregator owns the counters of one engine run and derives the
processing rate. AuditLog keeps the most recent structured events for
display while per-status totals keep counting past the display cap.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from collections.abc import Callable
from typing import Any

from tenantfill.migration.models import LogEntry, LogStatus, MigrationStats, StatsSnapshot

logger = logging.getLogger(__name__)


class StatsAggregator:
    """
    Counters for one engine run.

    The processing rate is ``processed_items / elapsed_seconds`` measured
    from the moment the current processing loop started. Outside a loop
    the rate is 0.

    Example:
        >>> aggregator = StatsAggregator()
        >>> aggregator.start_loop()
        >>> aggregator.increment(processed_items=10, skipped_items=2)
        >>> aggregator.snapshot().processed_items
        10
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._stats = MigrationStats()
        self._loop_started_at: float | None = None

    @property
    def stats(self) -> MigrationStats:
        return self._stats

    @property
    def is_loop_active(self) -> bool:
        return self._loop_started_at is not None

    def increment(self, **deltas: int) -> None:
        """Add non-negative deltas to counters (see MigrationStats.increment)."""
        self._stats.increment(**deltas)

    def set_total(self, total_items: int) -> None:
        """Set the display-only total record count."""
        if total_items < 0:
            raise ValueError(f"total_items must be >= 0, got {total_items}")
        self._stats.total_items = total_items

    def start_loop(self) -> None:
        if self._loop_started_at is None:
            self._loop_started_at = self._clock()

    def stop_loop(self) -> None:
        self._loop_started_at = None

    @property
    def processing_rate(self) -> float:
        """Records per second since the loop started, 0 when idle."""
        if self._loop_started_at is None:
            return 0.0
        elapsed = self._clock() - self._loop_started_at
        if elapsed <= 0:
            return 0.0
        return self._stats.processed_items / elapsed

    def snapshot(self) -> StatsSnapshot:
        return self._stats.snapshot(processing_rate=self.processing_rate)

    def reset(self) -> None:
        self._stats = MigrationStats()
        self._loop_started_at = None


class AuditLog:
    """
    Append-only log of structured migration events.

    Only the newest ``max_entries`` entries are kept for display.
    ``counts_by_status`` is maintained separately and is never capped.

    Example:
        >>> log = AuditLog(max_entries=2)
        >>> log.record("chat-1", LogStatus.SKIPPED, "already has company_id")
        >>> log.recent(1)[0].status
        <LogStatus.SKIPPED: 'skipped'>
    """

    def __init__(self, max_entries: int = 500) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._counts: Counter[LogStatus] = Counter()

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_entries(self) -> int:
        """Entries ever appended since the last clear."""
        return sum(self._counts.values())

    def append(self, entry: LogEntry) -> LogEntry:
        self._entries.append(entry)
        self._counts[entry.status] += 1
        logger.debug("[%s] %s: %s", entry.status.value, entry.subject_id, entry.message)
        return entry

    def record(
        self,
        subject_id: str,
        status: LogStatus,
        message: str,
        **metadata: Any,
    ) -> LogEntry:
        """Build and append an entry."""
        return self.append(
            LogEntry(subject_id=subject_id, status=status, message=message, metadata=metadata)
        )

    def recent(self, limit: int | None = None) -> list[LogEntry]:
        """
        Most recent entries, oldest first and newest last.

        Args:
            limit: Maximum entries to return (all retained entries if None)
        """
        entries = list(self._entries)
        if limit is None:
            return entries
        if limit <= 0:
            return []
        return entries[-limit:]

    def counts_by_status(self) -> dict[LogStatus, int]:
        return {status: self._counts.get(status, 0) for status in LogStatus}

    def clear(self) -> None:
        self._entries.clear()
        self._counts.clear()


__all__ = ["AuditLog", "StatsAggregator"]
