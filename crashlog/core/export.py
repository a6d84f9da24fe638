"""
ExportEngine - raw and JSON exports of a log store.
"""
import io
import json
import os
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Union

from crashlog.core.aggregation import utc_now
from crashlog.core.dto import AppVersion, LogKind
from crashlog.core.errors import ValidationError
from crashlog.storage.log_store import LogStore


DEFAULT_KINDS = (LogKind.EXCEPTION, LogKind.EVENT)


class ExportEngine:
    """Produces byte-exact and JSON copies of the stored logs."""

    def __init__(self, store: LogStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utc_now

    def export_raw(self) -> io.BytesIO:
        """
        Copy the store content.

        Returns:
            A stream over a verbatim copy of the store file, positioned at the start
        """
        stream = io.BytesIO(self.store.read_bytes())
        stream.seek(0)
        return stream

    def export_raw_to(self, path: str):
        """Write a verbatim copy of the store file to path."""
        data = self.store.read_bytes()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'wb') as f:
            f.write(data)

    def build_document(
        self,
        kinds: Sequence[Union[LogKind, str]] = DEFAULT_KINDS,
        predicate: Optional[Callable] = None,
        threshold: Optional[timedelta] = None,
        version: Optional[Union[AppVersion, str]] = None
    ) -> dict:
        """
        Build the export document.

        Args:
            kinds: Kinds of records to export, without duplicates
            predicate: Optional filter applied to every record
            threshold: Maximum age of the exported records
            version: Only export the records of this app version

        Returns:
            A dict with "<Kind>sCount" and "<Kind>s" keys per kind,
            lists ordered by timestamp descending

        Raises:
            ValidationError: If kinds is empty, has duplicates or unknown kinds
        """
        resolved = [LogKind.resolve(k) for k in kinds]
        if not resolved:
            raise ValidationError("The kinds to export cannot be empty")
        if len(set(resolved)) != len(resolved):
            raise ValidationError("The kinds to export cannot contain duplicates")
        if version is not None:
            version = AppVersion.parse(version)
        now = self.clock()

        def keep(record) -> bool:
            if threshold is not None and not now - record.timestamp < threshold:
                return False
            if version is not None and record.app_version != version:
                return False
            return predicate is None or predicate(record)

        snapshot = self.store.snapshot(resolved)
        document = {}
        for kind in resolved:
            stored = [s for s in snapshot[kind] if keep(s.record)]
            stored.sort(key=lambda s: (s.timestamp, s.id), reverse=True)
            document[kind.count_key] = len(stored)
            document[kind.list_key] = [s.record.to_dict(include_uid=False) for s in stored]
        return document

    def export_json(self, **filters) -> str:
        """Export the selected records as an indented JSON document."""
        return json.dumps(self.build_document(**filters), indent=2)

    def export_json_to(self, path: str, **filters):
        """Write the JSON export to path (UTF-8)."""
        text = self.export_json(**filters)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
