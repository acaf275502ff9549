# src/hecship/exporter/buffer.py
"""Pending buffer between the record stream and the flush cycle.

Producers append admitted records from any thread; the flush cycle takes
everything at once with drain_all().

Key design decisions:
- Swap, don't copy-then-clear: drain_all() replaces the backing list under
  the lock, so snapshot and clear are a single step and a concurrent
  append lands either in the snapshot or in the fresh list, never both
  and never neither.
- The lock guards only the list mutation; producers never wait on
  anything slower than a list append.
"""

import threading

from hecship.contracts import Record


class PendingBuffer:
    """Thread-safe FIFO of admitted records awaiting the next flush.

    Thread Safety:
        append(), drain_all() and discard() may be called concurrently from
        any threads.

    Example:
        buffer = PendingBuffer()
        buffer.append(record)
        batch = buffer.drain_all()  # [record]; buffer is now empty
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[Record] = []

    def append(self, record: Record) -> None:
        """Append an admitted record. O(1) amortized."""
        with self._lock:
            self._records.append(record)

    def drain_all(self) -> list[Record]:
        """Atomically take every pending record, oldest first.

        Returns:
            The drained records; empty list if nothing was pending.
        """
        with self._lock:
            drained, self._records = self._records, []
        return drained

    def discard(self) -> int:
        """Drop every pending record.

        Returns:
            Number of records dropped.
        """
        with self._lock:
            dropped = len(self._records)
            self._records = []
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
