import itertools
from collections import deque
from datetime import datetime, timezone
from typing import NamedTuple

__all__ = [
    "LogRecord",
    "LogBuffer",
]


class LogRecord(NamedTuple):
    seq: int
    timestamp: datetime
    line: str
    stream: str


class LogBuffer:
    """Bounded, sequence indexed store of process output lines.

    Sequence numbers start at 1 and are never reused, even after eviction.
    A reader that fell behind the eviction window simply gets the oldest
    retained records first.
    """

    streams: tuple[str, ...] = ("stdout", "stderr")

    def __init__(self, capacity: int = 5000) -> None:
        if capacity < 1:
            raise ValueError("Log buffer capacity must be at least 1")

        self._capacity: int = capacity
        self._records: deque[LogRecord] = deque(maxlen=capacity)
        self._last_seq: int = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last_seq(self) -> int:
        return self._last_seq

    @property
    def first_seq(self) -> int:
        """Sequence number of the oldest retained record (0 when empty)"""
        return self._records[0].seq if self._records else 0

    def append(self, line: str, stream: str = "stdout") -> LogRecord:
        """Store a line, evicting the oldest record once the buffer is full"""
        if stream not in self.streams:
            raise ValueError(f"Unknown stream: {stream}")

        self._last_seq += 1
        record = LogRecord(self._last_seq, datetime.now(timezone.utc), line, stream)

        # deque(maxlen=...) drops from the left
        self._records.append(record)

        return record

    def read(self, since: int = 0, limit: int | None = None) -> list[LogRecord]:
        """Return records with seq > since, oldest first"""
        if not self._records:
            return []

        since = max(since, 0)

        if since >= self._last_seq:
            return []

        # records are contiguous, so the offset can be computed directly
        start = max(since + 1 - self.first_seq, 0)
        stop = None if limit is None else start + max(limit, 0)

        return list(itertools.islice(self._records, start, stop))

    def __len__(self) -> int:
        return len(self._records)
