"""
crashlog - A local crash and event logger with retention and flush support.
"""

from crashlog.core.logger import Logger, ReadOnlyLogger
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
    VersionGroup,
)
from crashlog.core.errors import CrashLogError, StoreUnavailableError, ValidationError
from crashlog.core.aggregation import AggregationEngine
from crashlog.core.retention import RetentionManager
from crashlog.core.flush import CancellationToken, FlushEngine
from crashlog.core.export import ExportEngine
from crashlog.storage.log_store import LogStore
from crashlog.storage.file_store import FileLogStore

__version__ = "1.0.0"
__all__ = [
    "Logger",
    "ReadOnlyLogger",
    "AppVersion",
    "Event",
    "EventPriority",
    "ExceptionInfo",
    "ExceptionReport",
    "FlushMode",
    "LogKind",
    "LogsCollection",
    "StoredRecord",
    "VersionCount",
    "VersionGroup",
    "CrashLogError",
    "StoreUnavailableError",
    "ValidationError",
    "AggregationEngine",
    "RetentionManager",
    "CancellationToken",
    "FlushEngine",
    "ExportEngine",
    "LogStore",
    "FileLogStore"
]
