"""
RetentionManager - trims stored logs by age, version or count.
"""
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

from crashlog.core.aggregation import utc_now
from crashlog.core.dto import AppVersion, LogKind, StoredRecord
from crashlog.core.errors import ValidationError
from crashlog.storage.log_store import LogStore


KindFilter = Optional[Union[LogKind, str]]


def _kinds(kind: KindFilter) -> Tuple[LogKind, ...]:
    """Resolve an optional kind filter, None meaning every kind."""
    if kind is None:
        return tuple(LogKind)
    return (LogKind.resolve(kind),)


class RetentionManager:
    """
    Deletes logs according to a retention policy.

    Every operation deletes inside a single store transaction and then
    compacts the store, since space is only reclaimed on compaction.
    """

    def __init__(self, store: LogStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    def _delete_where(self, kinds: Tuple[LogKind, ...], predicate) -> List[StoredRecord]:
        with self.store.transaction():
            deleted = []
            for kind in kinds:
                deleted.extend(self.store.delete_where(kind, predicate))
        self.store.compact()
        return deleted

    def trim_by_age(self, threshold: timedelta, kind: KindFilter = None) -> List[StoredRecord]:
        """
        Delete the logs older than the threshold.

        Args:
            threshold: Maximum age of the logs to keep
            kind: Restrict to one kind of record (default: all)

        Returns:
            The deleted records
        """
        if not isinstance(threshold, timedelta):
            raise ValidationError(f"Threshold must be a timedelta, got {type(threshold).__name__}")
        kinds = _kinds(kind)
        now = self.clock()
        return self._delete_where(kinds, lambda r: now - r.timestamp > threshold)

    def trim_by_version(self, version: Union[AppVersion, str], kind: KindFilter = None) -> List[StoredRecord]:
        """Delete the logs written by app versions older than the given one."""
        version = AppVersion.parse(version)
        kinds = _kinds(kind)
        return self._delete_where(kinds, lambda r: r.app_version < version)

    def trim_to_count(self, max_count: int, kind: KindFilter = None) -> List[StoredRecord]:
        """
        Keep only the most recent logs.

        The oldest records are deleted in one transaction, so readers never
        observe a partially trimmed store.

        Args:
            max_count: Maximum number of records to keep
            kind: Restrict to one kind of record (default: all kinds, counted together)

        Returns:
            The deleted records, oldest first (empty if nothing was over the cap)

        Raises:
            ValidationError: If max_count is negative or not an integer
        """
        if isinstance(max_count, bool) or not isinstance(max_count, int):
            raise ValidationError(f"Count must be an integer, got {type(max_count).__name__}")
        if max_count < 0:
            raise ValidationError(f"Count cannot be negative ({max_count})")
        kinds = _kinds(kind)

        with self.store.transaction():
            stored = [s for k in kinds for s in self.store.scan_all(k)]
            excess = len(stored) - max_count
            if excess <= 0:
                return []

            stored.sort(key=lambda s: (s.timestamp, s.id))
            deleted = stored[:excess]
            for s in deleted:
                self.store.delete_by_id(s.kind, s.id)

        self.store.compact()
        print(f"[RetentionManager] Trimmed {len(deleted)} records (cap={max_count})")
        return deleted

    def reset(self, kind: KindFilter = None, version: Optional[Union[AppVersion, str]] = None) -> List[StoredRecord]:
        """
        Delete every log matching the filters.

        Args:
            kind: Restrict to one kind of record (default: all)
            version: Restrict to the logs of this exact app version
        """
        kinds = _kinds(kind)
        if version is None:
            return self._delete_where(kinds, lambda r: True)
        version = AppVersion.parse(version)
        return self._delete_where(kinds, lambda r: r.app_version == version)
