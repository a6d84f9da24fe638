"""
Contract of the durable record store consumed by the engines.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, List

from crashlog.core.dto import LogKind, LogRecord, StoredRecord


RecordPredicate = Callable[[LogRecord], bool]


class LogStore(ABC):
    """
    Keyed storage for exception reports and events.

    Every mutating call is all-or-nothing. Mutations issued inside a
    ``transaction()`` block become visible to readers together when the
    block exits.
    """

    @abstractmethod
    def insert(self, kind: LogKind, record: LogRecord) -> int:
        """Store a record and return its internal id."""

    @abstractmethod
    def scan_all(self, kind: LogKind) -> List[StoredRecord]:
        """Return every record of a kind, in stored order."""

    def scan_where(self, kind: LogKind, predicate: RecordPredicate) -> List[StoredRecord]:
        """Return the records of a kind matching the predicate, in stored order."""
        return [s for s in self.scan_all(kind) if predicate(s.record)]

    def snapshot(self, kinds: Iterable[LogKind]) -> Dict[LogKind, List[StoredRecord]]:
        """Records of several kinds, all read from the same committed state."""
        return {kind: self.scan_all(kind) for kind in kinds}

    @abstractmethod
    def delete_by_id(self, kind: LogKind, record_id: int) -> bool:
        """Delete one record. Returns False if no record has that id."""

    @abstractmethod
    def delete_where(self, kind: LogKind, predicate: RecordPredicate) -> List[StoredRecord]:
        """Delete and return every record of a kind matching the predicate."""

    @abstractmethod
    def compact(self):
        """Reclaim the space left by deleted records."""

    @abstractmethod
    def size_bytes(self) -> int:
        """Size of the underlying storage, in bytes."""

    @abstractmethod
    def read_bytes(self) -> bytes:
        """Consistent copy of the underlying storage content."""

    @contextmanager
    def transaction(self):
        """Group the mutations of the block into one commit."""
        yield self

    def close(self):
        """Release the store."""
