"""
AggregationEngine - read-only analytical views over the stored logs.
"""
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from crashlog.core.dto import (
    AppVersion,
    Event,
    EventPriority,
    ExceptionInfo,
    ExceptionReport,
    LogKind,
    LogsCollection,
    StoredRecord,
    VersionCount,
    VersionGroup,
)
from crashlog.storage.log_store import LogStore


ExceptionPredicate = Callable[[ExceptionReport], bool]
EventPredicate = Callable[[Event], bool]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def compute_exception_stats(stored: Sequence[StoredRecord]) -> List[Tuple[StoredRecord, ExceptionInfo]]:
    """
    Build the statistics view of every exception report in a set.

    Statistics of a report are computed over the reports of the same set
    sharing its exception type.

    Args:
        stored: The exception reports to enrich, with their store ids

    Returns:
        (stored record, statistics view) pairs, in input order
    """
    by_type: Dict[str, List[ExceptionReport]] = defaultdict(list)
    for s in stored:
        by_type[s.record.exception_type].append(s.record)

    stats = {}
    for exception_type, reports in by_type.items():
        timestamps = [r.timestamp for r in reports]
        versions = [r.app_version for r in reports]
        stats[exception_type] = (
            len(reports),
            min(versions),
            max(versions),
            max(timestamps),
            min(timestamps),
        )

    result = []
    for s in stored:
        occurrences, min_version, max_version, most_recent, least_recent = stats[s.record.exception_type]
        result.append((s, ExceptionInfo(
            report=s.record,
            occurrences=occurrences,
            min_version=min_version,
            max_version=max_version,
            most_recent_crash_time=most_recent,
            least_recent_crash_time=least_recent,
        )))
    return result


def _newest_first(pairs: Iterable[Tuple[StoredRecord, object]]) -> List[Tuple[StoredRecord, object]]:
    # Equal timestamps fall back to the store id, newest insert first
    return sorted(pairs, key=lambda p: (p[0].timestamp, p[0].id), reverse=True)


def group_by_version(pairs: Iterable[Tuple[StoredRecord, object]]) -> LogsCollection:
    """
    Group logs by app version.

    Groups are sorted by version descending and the logs in each group
    by timestamp descending.

    Args:
        pairs: (stored record, public view) pairs

    Returns:
        The grouped collection of public views
    """
    groups: Dict[AppVersion, List[Tuple[StoredRecord, object]]] = defaultdict(list)
    for pair in pairs:
        groups[pair[0].app_version].append(pair)

    return LogsCollection(groups=tuple(
        VersionGroup(
            app_version=version,
            logs=tuple(view for _, view in _newest_first(groups[version]))
        )
        for version in sorted(groups, reverse=True)
    ))


class AggregationEngine:
    """Turns store scans into version-grouped, enriched views."""

    def __init__(self, store: LogStore, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the engine.

        Args:
            store: The log store to read from
            clock: Returns the current time, used by age thresholds
        """
        self.store = store
        self.clock = clock or utc_now

    def _scan(self, kind: LogKind, predicate, threshold: Optional[timedelta]) -> List[StoredRecord]:
        if predicate is None:
            stored = self.store.scan_all(kind)
        else:
            stored = self.store.scan_where(kind, predicate)
        if threshold is not None:
            now = self.clock()
            stored = [s for s in stored if now - s.timestamp < threshold]
        return stored

    # ---------- Exceptions ----------

    def load_exceptions(
        self,
        predicate: Optional[ExceptionPredicate] = None,
        threshold: Optional[timedelta] = None
    ) -> LogsCollection:
        """
        Load the exception reports grouped by app version.

        Args:
            predicate: Optional filter over the stored reports
            threshold: Maximum age of the reports to load

        Returns:
            Version groups of ExceptionInfo views
        """
        stored = self._scan(LogKind.EXCEPTION, predicate, threshold)
        return group_by_version(compute_exception_stats(stored))

    def load_exceptions_by_type(
        self,
        exception_type: str,
        threshold: Optional[timedelta] = None
    ) -> Tuple[ExceptionInfo, ...]:
        """Load the reports of one exception type, newest first."""
        stored = self._scan(
            LogKind.EXCEPTION,
            lambda r: r.exception_type == exception_type,
            threshold
        )
        return tuple(view for _, view in _newest_first(compute_exception_stats(stored)))

    def load_exceptions_for_version(
        self,
        version: AppVersion,
        exception_type: Optional[str] = None
    ) -> Tuple[ExceptionInfo, ...]:
        """Load the reports logged by one app version, newest first."""
        version = AppVersion.parse(version)

        def matches(r: ExceptionReport) -> bool:
            if r.app_version != version:
                return False
            return exception_type is None or r.exception_type == exception_type

        return self.load_exceptions(matches).logs

    def version_breakdown(self, exception_type: str) -> List[VersionCount]:
        """
        Count the reports of an exception type per app version.

        Returns:
            One entry per version that logged the type, oldest version first
        """
        counts: Dict[AppVersion, int] = defaultdict(int)
        for s in self.store.scan_where(LogKind.EXCEPTION, lambda r: r.exception_type == exception_type):
            counts[s.app_version] += 1
        return [VersionCount(app_version=v, count=counts[v]) for v in sorted(counts)]

    # ---------- Events ----------

    def load_events(
        self,
        predicate: Optional[EventPredicate] = None,
        threshold: Optional[timedelta] = None
    ) -> LogsCollection:
        """Load the events grouped by app version."""
        stored = self._scan(LogKind.EVENT, predicate, threshold)
        return group_by_version((s, s.record) for s in stored)

    def load_events_for_version(
        self,
        version: AppVersion,
        priority: Optional[EventPriority] = None
    ) -> Tuple[Event, ...]:
        """Load the events logged by one app version, newest first."""
        version = AppVersion.parse(version)

        def matches(e: Event) -> bool:
            if e.app_version != version:
                return False
            return priority is None or e.priority == priority

        return self.load_events(matches).logs
