"""
File-backed log store: an append-only JSON-lines log with an in-memory index.
"""
import json
import os
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from skiplistcollections import SkipListDict

from crashlog.core.dto import LogKind, LogRecord, StoredRecord, record_from_dict
from crashlog.core.errors import StoreUnavailableError
from crashlog.storage.log_store import LogStore, RecordPredicate


class FileLogStore(LogStore):
    """
    Log store persisted as one append-only file.

    Each commit is written as a single line, so a torn write at crash time
    only loses that commit. Deleted records stay in the file as DELETE
    lines until compact() rewrites it with the live records only.
    """

    def __init__(self, path: str, read_only: bool = False, index_capacity: int = 65536):
        """
        Open (or create) a log store.

        Args:
            path: Path to the store file
            read_only: Open an existing file for reads only
            index_capacity: Expected number of records per kind, sizes the skiplists

        Raises:
            StoreUnavailableError: If the file cannot be opened or created
        """
        self.path = path
        self.read_only = read_only
        self.index_capacity = index_capacity
        self._lock = threading.RLock()
        self._indexes: Dict[LogKind, SkipListDict] = {
            kind: SkipListDict(capacity=index_capacity) for kind in LogKind
        }
        self._next_id = 1
        self._closed = False

        # Pending operations of the open transaction (owned by the thread holding _lock)
        self._tx_depth = 0
        self._pending: List[dict] = []
        self._pending_live: Dict[tuple, bool] = {}

        self._open()

    def _open(self):
        """Create the file if needed and replay it into the index."""
        try:
            if not os.path.exists(self.path):
                if self.read_only:
                    raise StoreUnavailableError(f"Log store not found: {self.path}")
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                open(self.path, 'a').close()
            with open(self.path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
        except OSError as e:
            raise StoreUnavailableError(f"Cannot open log store {self.path}: {e}") from e

        replayed = 0
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                self._apply(json.loads(line))
                replayed += 1
            except (ValueError, KeyError, TypeError) as e:
                print(f"Warning: Skipping corrupted log store record: {e}")

        if replayed:
            print(f"[FileLogStore] Replayed {replayed} commits from {self.path}")

    # ---------- Internal helpers ----------

    def _check_readable(self):
        if self._closed:
            raise StoreUnavailableError("Log store is closed")

    def _check_writable(self):
        self._check_readable()
        if self.read_only:
            raise StoreUnavailableError(f"Log store {self.path} is read-only")

    def _decode(self, op: dict) -> List[Tuple[LogKind, int, Optional[StoredRecord]]]:
        """
        Decode an operation into (kind, id, record) changes, a None record
        meaning a deletion. A BATCH decodes into the changes of all its parts.
        """
        kind_op = op["op"]
        if kind_op == "BATCH":
            return [change for inner in op["ops"] for change in self._decode(inner)]

        kind = LogKind.resolve(op["kind"])
        record_id = int(op["id"])
        if kind_op == "PUT":
            record = record_from_dict(kind, op["record"])
            return [(kind, record_id, StoredRecord(id=record_id, kind=kind, record=record))]
        if kind_op == "DELETE":
            return [(kind, record_id, None)]
        raise ValueError(f"Unknown operation '{kind_op}'")

    def _apply(self, op: dict):
        """Apply an operation to the index, only once every part of it has decoded."""
        for kind, record_id, stored in self._decode(op):
            index = self._indexes[kind]
            if stored is not None:
                index[record_id] = stored
                self._next_id = max(self._next_id, record_id + 1)
            elif record_id in index:
                del index[record_id]

    def _is_live(self, kind: LogKind, record_id: int) -> bool:
        """Whether a record exists, taking the open transaction into account."""
        pending = self._pending_live.get((kind.value, record_id))
        if pending is not None:
            return pending
        return record_id in self._indexes[kind]

    def _submit(self, op: dict):
        """Queue an operation in the current transaction, or commit it alone."""
        with self.transaction():
            self._pending.append(op)
            self._pending_live[(op["kind"], op["id"])] = op["op"] == "PUT"

    def _discard_pending(self):
        self._pending = []
        self._pending_live = {}

    def _commit(self):
        """Write the pending operations as one line, then apply them."""
        ops = self._pending
        self._discard_pending()
        if not ops:
            return

        line = ops[0] if len(ops) == 1 else {"op": "BATCH", "ops": ops}
        try:
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(line, separators=(',', ':')) + '\n')
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write log store {self.path}: {e}") from e

        for op in ops:
            self._apply(op)

    # ---------- Write API ----------

    @contextmanager
    def transaction(self):
        """
        Group mutations into a single commit.

        The store lock is held for the whole block, so other threads see
        either none or all of its mutations. Nested blocks join the
        outermost one. If the block raises, its mutations are discarded.
        """
        with self._lock:
            self._check_writable()
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self._discard_pending()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._commit()

    def insert(self, kind: LogKind, record: LogRecord) -> int:
        with self._lock:
            self._check_writable()
            record_id = self._next_id
            self._next_id += 1
            self._submit({
                "op": "PUT",
                "kind": kind.value,
                "id": record_id,
                "record": record.to_dict(),
            })
            return record_id

    def delete_by_id(self, kind: LogKind, record_id: int) -> bool:
        with self._lock:
            self._check_writable()
            if not self._is_live(kind, record_id):
                return False
            self._submit({"op": "DELETE", "kind": kind.value, "id": record_id})
            return True

    def delete_where(self, kind: LogKind, predicate: RecordPredicate) -> List[StoredRecord]:
        with self.transaction():
            return [
                stored for stored in self.scan_where(kind, predicate)
                if self.delete_by_id(kind, stored.id)
            ]

    def compact(self):
        """
        Rewrite the file with the live records only.
        Uses a temporary file and an atomic rename.
        """
        with self._lock:
            self._check_writable()
            if self._tx_depth:
                raise RuntimeError("Cannot compact inside a transaction")

            size_before = self.size_bytes()
            tmp_path = self.path + ".tmp"
            try:
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    for kind in LogKind:
                        for stored in self._indexes[kind].values():
                            op = {
                                "op": "PUT",
                                "kind": kind.value,
                                "id": stored.id,
                                "record": stored.record.to_dict(),
                            }
                            f.write(json.dumps(op, separators=(',', ':')) + '\n')
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise StoreUnavailableError(f"Cannot compact log store {self.path}: {e}") from e

            print(f"[FileLogStore] Compacted {os.path.basename(self.path)}: "
                  f"{size_before} -> {self.size_bytes()} bytes")

    # ---------- Read API ----------

    def scan_all(self, kind: LogKind) -> List[StoredRecord]:
        with self._lock:
            self._check_readable()
            return list(self._indexes[kind].values())

    def snapshot(self, kinds: Iterable[LogKind]) -> Dict[LogKind, List[StoredRecord]]:
        # One lock hold, so a commit cannot land between two kinds
        with self._lock:
            self._check_readable()
            return {kind: list(self._indexes[kind].values()) for kind in kinds}

    def get(self, kind: LogKind, record_id: int) -> Optional[StoredRecord]:
        """Return a committed record, or None."""
        with self._lock:
            self._check_readable()
            index = self._indexes[kind]
            if record_id in index:
                return index[record_id]
            return None

    def count(self, kind: LogKind) -> int:
        with self._lock:
            self._check_readable()
            return len(self._indexes[kind])

    def size_bytes(self) -> int:
        if not os.path.exists(self.path):
            return 0
        return os.path.getsize(self.path)

    def read_bytes(self) -> bytes:
        with self._lock:
            self._check_readable()
            try:
                with open(self.path, 'rb') as f:
                    return f.read()
            except OSError as e:
                raise StoreUnavailableError(f"Cannot read log store {self.path}: {e}") from e

    def close(self):
        with self._lock:
            self._closed = True

    def __repr__(self):
        return f"FileLogStore(path={self.path!r}, read_only={self.read_only})"
