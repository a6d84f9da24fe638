"""
Data Transfer Objects for the crash log engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional, Tuple, Union

from crashlog.core.errors import ValidationError


@dataclass(frozen=True, order=True)
class AppVersion:
    """A 4-component application version (major.minor.build.revision)."""
    major: int = 0
    minor: int = 0
    build: int = 0
    revision: int = 0

    @staticmethod
    def parse(value: Union[str, "AppVersion"]) -> "AppVersion":
        """
        Parse a dotted version string.

        Args:
            value: A string with 1 to 4 non-negative integer components,
                or an existing AppVersion

        Returns:
            The parsed version, missing components set to 0

        Raises:
            ValidationError: If the string is not a valid version
        """
        if isinstance(value, AppVersion):
            return value
        if not isinstance(value, str):
            raise ValidationError(f"Version must be a string, got {type(value).__name__}")
        parts = value.strip().split(".")
        if not 1 <= len(parts) <= 4:
            raise ValidationError(f"Invalid version '{value}'")
        try:
            numbers = [int(p) for p in parts]
        except ValueError:
            raise ValidationError(f"Invalid version '{value}'") from None
        if any(n < 0 for n in numbers):
            raise ValidationError(f"Invalid version '{value}'")
        return AppVersion(*numbers)

    def __str__(self):
        return f"{self.major}.{self.minor}.{self.build}.{self.revision}"


class EventPriority(IntEnum):
    """Priority of a logged event, from the most to the least important."""
    ERROR = 0
    WARNING = 1
    INFO = 2
    VERBOSE = 3
    DEBUG = 4

    @property
    def label(self) -> str:
        """Name used in persisted and exported documents."""
        return self.name.capitalize()

    @staticmethod
    def from_label(label: str) -> "EventPriority":
        try:
            return EventPriority[label.upper()]
        except (KeyError, AttributeError):
            raise ValidationError(f"Unknown event priority '{label}'") from None


class FlushMode(Enum):
    """Execution mode used when flushing stored logs."""
    SERIAL = "Serial"
    PARALLEL = "Parallel"


class LogKind(Enum):
    """The two kinds of records kept in a log store."""
    EXCEPTION = "Exception"
    EVENT = "Event"

    @staticmethod
    def resolve(token: Union[str, "LogKind"]) -> "LogKind":
        """
        Resolve a kind token.

        Args:
            token: A LogKind or its string value ("Exception" or "Event")

        Raises:
            ValidationError: If the token names no supported kind
        """
        if isinstance(token, LogKind):
            return token
        for kind in LogKind:
            if kind.value == token:
                return kind
        raise ValidationError(f"Unsupported record kind: {token!r}")

    @property
    def list_key(self) -> str:
        return f"{self.value}s"

    @property
    def count_key(self) -> str:
        return f"{self.value}sCount"


def _timestamp_to_str(timestamp: datetime) -> str:
    return timestamp.isoformat()


def _timestamp_from_str(value: str) -> datetime:
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class ExceptionReport:
    """A stored exception report."""
    uid: str
    exception_type: str
    hresult: int
    message: Optional[str]
    source: Optional[str]
    stack_trace: Optional[str]
    timestamp: datetime
    app_version: AppVersion
    used_memory: int = 0

    def to_dict(self, include_uid: bool = True) -> dict:
        """Serialize the report using the public field names and order."""
        data = {
            "ExceptionType": self.exception_type,
            "HResult": self.hresult,
            "Message": self.message,
            "Source": self.source,
            "StackTrace": self.stack_trace,
            "Timestamp": _timestamp_to_str(self.timestamp),
            "AppVersion": str(self.app_version),
            "UsedMemory": self.used_memory,
        }
        if include_uid:
            data["Uid"] = self.uid
        return data

    @staticmethod
    def from_dict(data: dict) -> "ExceptionReport":
        return ExceptionReport(
            uid=data.get("Uid", ""),
            exception_type=data["ExceptionType"],
            hresult=data.get("HResult", 0),
            message=data.get("Message"),
            source=data.get("Source"),
            stack_trace=data.get("StackTrace"),
            timestamp=_timestamp_from_str(data["Timestamp"]),
            app_version=AppVersion.parse(data["AppVersion"]),
            used_memory=data.get("UsedMemory", 0)
        )


@dataclass(frozen=True)
class Event:
    """A stored free-form event."""
    uid: str
    priority: EventPriority
    message: Optional[str]
    timestamp: datetime
    app_version: AppVersion

    def to_dict(self, include_uid: bool = True) -> dict:
        """Serialize the event, with the priority written by name."""
        data = {
            "Priority": self.priority.label,
            "Message": self.message,
            "Timestamp": _timestamp_to_str(self.timestamp),
            "AppVersion": str(self.app_version),
        }
        if include_uid:
            data["Uid"] = self.uid
        return data

    @staticmethod
    def from_dict(data: dict) -> "Event":
        return Event(
            uid=data.get("Uid", ""),
            priority=EventPriority.from_label(data["Priority"]),
            message=data.get("Message"),
            timestamp=_timestamp_from_str(data["Timestamp"]),
            app_version=AppVersion.parse(data["AppVersion"])
        )


LogRecord = Union[ExceptionReport, Event]


def record_from_dict(kind: LogKind, data: dict) -> LogRecord:
    if kind is LogKind.EXCEPTION:
        return ExceptionReport.from_dict(data)
    return Event.from_dict(data)


@dataclass(frozen=True)
class StoredRecord:
    """A record paired with its internal store id."""
    id: int
    kind: LogKind
    record: LogRecord

    @property
    def timestamp(self) -> datetime:
        return self.record.timestamp

    @property
    def app_version(self) -> AppVersion:
        return self.record.app_version


@dataclass(frozen=True)
class ExceptionInfo:
    """
    Read-only statistics view over an exception report.

    The statistics are derived from the set of reports a query ran on
    and are never written back to the store.
    """
    report: ExceptionReport
    occurrences: int
    min_version: AppVersion
    max_version: AppVersion
    most_recent_crash_time: datetime
    least_recent_crash_time: datetime

    @property
    def uid(self) -> str:
        return self.report.uid

    @property
    def exception_type(self) -> str:
        return self.report.exception_type

    @property
    def hresult(self) -> int:
        return self.report.hresult

    @property
    def message(self) -> Optional[str]:
        return self.report.message

    @property
    def source(self) -> Optional[str]:
        return self.report.source

    @property
    def stack_trace(self) -> Optional[str]:
        return self.report.stack_trace

    @property
    def timestamp(self) -> datetime:
        return self.report.timestamp

    @property
    def app_version(self) -> AppVersion:
        return self.report.app_version

    @property
    def used_memory(self) -> int:
        return self.report.used_memory

    def to_dict(self, include_uid: bool = True) -> dict:
        return self.report.to_dict(include_uid=include_uid)


@dataclass(frozen=True)
class VersionGroup:
    """Logs sharing the same app version."""
    app_version: AppVersion
    logs: Tuple = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.logs)

    def __iter__(self):
        return iter(self.logs)

    def __len__(self) -> int:
        return len(self.logs)


@dataclass(frozen=True)
class LogsCollection:
    """Logs grouped by app version, newest version first."""
    groups: Tuple[VersionGroup, ...] = field(default_factory=tuple)

    @property
    def count(self) -> int:
        """Number of version groups."""
        return len(self.groups)

    @property
    def logs_count(self) -> int:
        return sum(g.count for g in self.groups)

    @property
    def logs(self) -> Tuple:
        """All the logs, in group order."""
        return tuple(log for g in self.groups for log in g.logs)

    @property
    def app_versions(self) -> Tuple[AppVersion, ...]:
        return tuple(g.app_version for g in self.groups)

    def __iter__(self):
        return iter(self.groups)

    def __len__(self) -> int:
        return len(self.groups)

    def __getitem__(self, index: int) -> VersionGroup:
        return self.groups[index]


@dataclass(frozen=True)
class VersionCount:
    """Number of reports of one exception type logged by an app version."""
    app_version: AppVersion
    count: int
