"""
Main entry points: a read-only logger over a store file, and the full logger.
"""
import os
import sys
import threading
import traceback
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

from crashlog.core.aggregation import AggregationEngine, utc_now
from crashlog.core.dto import (
    AppVersion,
    Event,
    EventPriority,
    ExceptionInfo,
    ExceptionReport,
    FlushMode,
    LogKind,
    LogsCollection,
    StoredRecord,
    VersionCount,
)
from crashlog.core.errors import ValidationError
from crashlog.core.export import DEFAULT_KINDS, ExportEngine
from crashlog.core.flush import CancellationToken, FlushEngine, Uploader
from crashlog.core.retention import KindFilter, RetentionManager
from crashlog.storage.file_store import FileLogStore
from crashlog.storage.log_store import LogStore


def exception_type_name(exc_type: type) -> str:
    """Fully qualified name of an exception class (builtins are left bare)."""
    module = exc_type.__module__
    if module in (None, "builtins"):
        return exc_type.__qualname__
    return f"{module}.{exc_type.__qualname__}"


def default_memory_usage() -> int:
    """Peak resident memory of the current process, in bytes."""
    import resource
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is in kilobytes on Linux and in bytes on macOS
    return usage if sys.platform == "darwin" else usage * 1024


class ReadOnlyLogger:
    """Queries and exports over an existing log store."""

    def __init__(
        self,
        path: Optional[str] = None,
        store: Optional[LogStore] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Open a log store for reading.

        Args:
            path: Path to a store file (e.g. an exported copy)
            store: An already opened store, used instead of path
            clock: Returns the current time as an aware datetime
        """
        if store is None:
            if path is None:
                raise ValidationError("Either a path or a store is required")
            store = FileLogStore(path, read_only=True)
        self.store = store
        self.clock = clock or utc_now
        self.aggregation = AggregationEngine(store, clock=self.clock)
        self.exporter = ExportEngine(store, clock=self.clock)

    # ---------- Exceptions ----------

    def load_exceptions(
        self,
        predicate: Optional[Callable[[ExceptionReport], bool]] = None,
        threshold: Optional[timedelta] = None,
        exception_type: Optional[Union[str, type]] = None
    ) -> LogsCollection:
        """
        Load the exception reports grouped by app version.

        Args:
            predicate: Optional filter over the stored reports
            threshold: Maximum age of the reports
            exception_type: Only load reports of this type (name or class)
        """
        if exception_type is not None:
            type_name = exception_type if isinstance(exception_type, str) else exception_type_name(exception_type)
            base = predicate

            def predicate(r: ExceptionReport) -> bool:
                return r.exception_type == type_name and (base is None or base(r))

        return self.aggregation.load_exceptions(predicate, threshold)

    def load_exceptions_by_type(
        self,
        exception_type: Union[str, type],
        threshold: Optional[timedelta] = None
    ) -> Tuple[ExceptionInfo, ...]:
        if not isinstance(exception_type, str):
            exception_type = exception_type_name(exception_type)
        return self.aggregation.load_exceptions_by_type(exception_type, threshold)

    def load_exceptions_for_version(
        self,
        version: Union[AppVersion, str],
        exception_type: Optional[str] = None
    ) -> Tuple[ExceptionInfo, ...]:
        return self.aggregation.load_exceptions_for_version(version, exception_type)

    def version_breakdown(self, exception_type: Union[str, type]) -> List[VersionCount]:
        if not isinstance(exception_type, str):
            exception_type = exception_type_name(exception_type)
        return self.aggregation.version_breakdown(exception_type)

    # ---------- Events ----------

    def load_events(
        self,
        predicate: Optional[Callable[[Event], bool]] = None,
        threshold: Optional[timedelta] = None,
        priority: Optional[EventPriority] = None
    ) -> LogsCollection:
        """Load the events grouped by app version, optionally for one priority."""
        if priority is not None:
            base = predicate

            def predicate(e: Event) -> bool:
                return e.priority == priority and (base is None or base(e))

        return self.aggregation.load_events(predicate, threshold)

    def load_events_for_version(
        self,
        version: Union[AppVersion, str],
        priority: Optional[EventPriority] = None
    ) -> Tuple[Event, ...]:
        return self.aggregation.load_events_for_version(version, priority)

    # ---------- Export ----------

    def export(self, path: Optional[str] = None):
        """
        Export a verbatim copy of the store file.

        Args:
            path: Destination file; if omitted a BytesIO stream is returned
        """
        if path is None:
            return self.exporter.export_raw()
        self.exporter.export_raw_to(path)

    def export_as_json(
        self,
        path: Optional[str] = None,
        kinds=DEFAULT_KINDS,
        predicate: Optional[Callable] = None,
        threshold: Optional[timedelta] = None,
        version: Optional[Union[AppVersion, str]] = None
    ) -> Optional[str]:
        """
        Export the logs as JSON.

        Args:
            path: Destination file; if omitted the JSON text is returned
            kinds: Kinds of records to include
            predicate: Optional filter over the records
            threshold: Maximum age of the records
            version: Only include this app version
        """
        filters = dict(kinds=kinds, predicate=predicate, threshold=threshold, version=version)
        if path is None:
            return self.exporter.export_json(**filters)
        self.exporter.export_json_to(path, **filters)
        return None

    # ---------- Info ----------

    @property
    def size(self) -> int:
        """Size of the underlying store, in bytes."""
        return self.store.size_bytes()

    def close(self):
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class Logger(ReadOnlyLogger):
    """Crash and event logger with retention, export and flush support."""

    def __init__(
        self,
        data_dir: str = "./data",
        filename: str = "crashlog.db",
        app_version: Union[AppVersion, str] = "1.0.0.0",
        memory_provider: Optional[Callable[[], int]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_parallel_uploads: int = 8,
        store: Optional[LogStore] = None
    ):
        """
        Initialize the logger.

        Args:
            data_dir: Directory holding the store file
            filename: Name of the store file
            app_version: Version stamped on every new record
            memory_provider: Returns the memory used by the app, in bytes
            clock: Returns the current time as an aware datetime
            max_parallel_uploads: Concurrency cap of parallel flushes
            store: An already opened store, used instead of data_dir/filename
        """
        if store is None:
            store = FileLogStore(os.path.join(data_dir, filename))
        super().__init__(store=store, clock=clock)
        self.data_dir = data_dir
        self.app_version = AppVersion.parse(app_version)
        self.memory_provider = memory_provider or default_memory_usage
        self.retention = RetentionManager(store, clock=self.clock)
        self.flusher = FlushEngine(store, max_workers=max_parallel_uploads)

        self._last_timestamp: Optional[datetime] = None
        self._timestamp_lock = threading.Lock()

    def _get_timestamp(self) -> datetime:
        """Current time, strictly increasing across the records of this logger."""
        now = self.clock()
        with self._timestamp_lock:
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = now
            return now

    def _used_memory(self) -> int:
        try:
            return int(self.memory_provider())
        except Exception:
            return 0

    # ---------- Log APIs ----------

    def log(self, exc: BaseException) -> Optional[str]:
        """
        Record an exception report.

        Never raises: a failure while recording is absorbed.

        Returns:
            The uid of the new report, or None if it could not be saved
        """
        try:
            tb = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else None
            report = ExceptionReport(
                uid=str(uuid.uuid4()),
                exception_type=exception_type_name(type(exc)),
                hresult=getattr(exc, "errno", None) or 0,
                message=str(exc),
                source=tb[-1].name if tb else None,
                stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                timestamp=self._get_timestamp(),
                app_version=self.app_version,
                used_memory=self._used_memory()
            )
            self.store.insert(LogKind.EXCEPTION, report)
            return report.uid
        except Exception as e:
            print(f"Warning: Could not record exception report: {e}")
            return None

    def log_event(self, priority: EventPriority, message: str) -> Optional[str]:
        """
        Record an event.

        Never raises: a failure while recording is absorbed.

        Returns:
            The uid of the new event, or None if it could not be saved
        """
        try:
            event = Event(
                uid=str(uuid.uuid4()),
                priority=EventPriority(priority),
                message=message,
                timestamp=self._get_timestamp(),
                app_version=self.app_version
            )
            self.store.insert(LogKind.EVENT, event)
            return event.uid
        except Exception as e:
            print(f"Warning: Could not record event: {e}")
            return None

    # ---------- Retention APIs ----------

    def trim(
        self,
        threshold: Optional[timedelta] = None,
        version: Optional[Union[AppVersion, str]] = None,
        count: Optional[int] = None,
        kind: KindFilter = None
    ) -> List[StoredRecord]:
        """
        Trim the stored logs by age, version or count.

        Exactly one of threshold, version or count must be given.

        Returns:
            The deleted records
        """
        given = [arg is not None for arg in (threshold, version, count)]
        if sum(given) != 1:
            raise ValidationError("Exactly one of threshold, version or count is required")
        if threshold is not None:
            return self.retention.trim_by_age(threshold, kind)
        if version is not None:
            return self.retention.trim_by_version(version, kind)
        return self.retention.trim_to_count(count, kind)

    def trim_by_age(self, threshold: timedelta, kind: KindFilter = None) -> List[StoredRecord]:
        return self.retention.trim_by_age(threshold, kind)

    def trim_by_version(self, version: Union[AppVersion, str], kind: KindFilter = None) -> List[StoredRecord]:
        return self.retention.trim_by_version(version, kind)

    def trim_to_count(self, max_count: int, kind: KindFilter = None) -> List[StoredRecord]:
        return self.retention.trim_to_count(max_count, kind)

    def reset(self, kind: KindFilter = None, version: Optional[Union[AppVersion, str]] = None) -> List[StoredRecord]:
        """Delete every log, or those of one kind and/or app version."""
        return self.retention.reset(kind, version)

    # ---------- Flush APIs ----------

    def flush(
        self,
        kind: Union[LogKind, str],
        uploader: Uploader,
        token: Optional[CancellationToken] = None,
        mode: FlushMode = FlushMode.SERIAL,
        predicate: Optional[Callable] = None
    ) -> int:
        """
        Upload the stored logs of a kind, deleting each one once delivered.

        Returns:
            Number of records flushed
        """
        return self.flusher.flush(kind, uploader, token=token, mode=mode, predicate=predicate)
