"""
FlushEngine - uploads stored logs and deletes the ones delivered.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Tuple, Union

from crashlog.core.aggregation import compute_exception_stats
from crashlog.core.dto import FlushMode, LogKind, StoredRecord
from crashlog.core.errors import ValidationError
from crashlog.storage.log_store import LogStore


class CancellationToken:
    """Cooperative cancellation flag shared with uploaders."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout expires. Returns is_cancelled."""
        return self._event.wait(timeout)


Uploader = Callable[[object, CancellationToken], bool]


class FlushEngine:
    """
    Delivers stored logs through a caller-supplied uploader.

    A record is deleted if and only if its uploader call returned True;
    anything else leaves it in the store for a later flush.

    Features:
    - Serial mode: stored order, stops at the first failure or on cancellation
    - Parallel mode: bounded thread pool, independent outcome per record
    - One compaction per flush that deleted anything
    """

    def __init__(self, store: LogStore, max_workers: int = 8):
        """
        Initialize the flush engine.

        Args:
            store: The log store to flush
            max_workers: Maximum concurrent uploader calls in parallel mode
        """
        if max_workers < 1:
            raise ValidationError(f"max_workers must be at least 1 ({max_workers})")
        self.store = store
        self.max_workers = max_workers

    def _snapshot(self, kind: LogKind, predicate) -> List[Tuple[StoredRecord, object]]:
        """Current records of a kind paired with the view given to the uploader."""
        stored = self.store.scan_all(kind)
        if kind is LogKind.EXCEPTION:
            pairs = compute_exception_stats(stored)
        else:
            pairs = [(s, s.record) for s in stored]
        if predicate is not None:
            pairs = [(s, view) for s, view in pairs if predicate(view)]
        return pairs

    def flush(
        self,
        kind: Union[LogKind, str],
        uploader: Uploader,
        token: Optional[CancellationToken] = None,
        mode: FlushMode = FlushMode.SERIAL,
        predicate: Optional[Callable[[object], bool]] = None
    ) -> int:
        """
        Upload the stored logs of a kind.

        Args:
            kind: The kind of records to flush
            uploader: Called as uploader(record, token), returns True once delivered
            token: Cancellation token checked before each serial upload
            mode: FlushMode.SERIAL or FlushMode.PARALLEL
            predicate: Optional filter over the records to flush

        Returns:
            Number of records uploaded and deleted

        Raises:
            ValidationError: If the kind or mode is not supported
        """
        kind = LogKind.resolve(kind)
        if not isinstance(mode, FlushMode):
            raise ValidationError(f"Unsupported flush mode: {mode!r}")
        if token is None:
            token = CancellationToken()

        pairs = self._snapshot(kind, predicate)
        if not pairs:
            return 0

        if mode is FlushMode.SERIAL:
            return self._flush_serial(pairs, uploader, token)
        return self._flush_parallel(pairs, uploader, token)

    def _finish(self, flushed: int, total: int, mode: FlushMode, error: Optional[BaseException] = None):
        """Compact after a flush. A compaction failure never hides an upload error."""
        try:
            if flushed:
                self.store.compact()
        except Exception as e:
            if error is None:
                raise
            print(f"Warning: Could not compact after failed flush: {e}")
        print(f"[FlushEngine] {mode.value} flush uploaded {flushed}/{total} records")

    def _flush_serial(self, pairs, uploader: Uploader, token: CancellationToken) -> int:
        flushed = 0
        try:
            for stored, view in pairs:
                if token.is_cancelled:
                    break
                if not uploader(view, token):
                    break
                # Already gone if a concurrent trim removed it
                if self.store.delete_by_id(stored.kind, stored.id):
                    flushed += 1
        except Exception as e:
            self._finish(flushed, len(pairs), FlushMode.SERIAL, error=e)
            raise
        self._finish(flushed, len(pairs), FlushMode.SERIAL)
        return flushed

    def _flush_parallel(self, pairs, uploader: Uploader, token: CancellationToken) -> int:
        workers = min(self.max_workers, len(pairs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="flush-upload") as executor:
            futures = [executor.submit(uploader, view, token) for _, view in pairs]
            wait(futures)

        flushed = 0
        error = None
        for (stored, _), future in zip(pairs, futures):
            exc = future.exception()
            if exc is not None:
                if error is None:
                    error = exc
                continue
            if future.result() and self.store.delete_by_id(stored.kind, stored.id):
                flushed += 1

        self._finish(flushed, len(pairs), FlushMode.PARALLEL, error=error)
        if error is not None:
            raise error
        return flushed
